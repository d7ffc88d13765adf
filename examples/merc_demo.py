"""Minimal demonstration of the shopping assistant."""

from merc_core.api.service import add_to_cart, send_message

if __name__ == "__main__":
    question = "ofertas de hoy"
    result = send_message(question)
    print("User:", question)
    print("Cora:", result["state"]["messages"][-1]["text"])
    for product in result["state"]["suggested_products"]:
        print(f"  - {product['name']} ({product['price_cents'] / 100:.2f} €)")
    if result["state"]["suggested_products"]:
        cart = add_to_cart(result["state"]["suggested_products"][0]["id"])
        print("Cart:", cart["cart"])
