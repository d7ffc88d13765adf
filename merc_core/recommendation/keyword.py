"""本地关键词推荐引擎。

不依赖任何远程服务，按查询词与商品名称/标签/描述的重合程度打分。
排序使用稳定排序，分数相同的商品保持目录中的顺序。
"""

import re
import unicodedata
from typing import Dict, FrozenSet, List, Optional, Sequence, Set, Tuple

from merc_core.domain.models import CancelToken, Message, Product, RecommendationResult, Role
from merc_core.domain.stores import ProductCatalog


STOP_WORDS: FrozenSet[str] = frozenset({
    "a", "al", "algo", "algun", "alguna", "alguno", "con", "de", "del", "el", "en", "es",
    "hay", "hoy", "la", "las", "lo", "los", "me", "mi", "para", "por", "que", "quiero",
    "se", "si", "sin", "su", "tienes", "tiene", "un", "una", "unos", "unas", "y", "o",
    "necesito", "busco", "dame", "muestrame", "recomiendame", "favor", "cual", "cuales",
    "the", "and", "for", "with", "some", "any", "today", "show", "want",
})

DEAL_TERMS: FrozenSet[str] = frozenset({
    "oferta", "ofertas", "descuento", "descuentos", "promocion", "promociones",
    "barato", "barata", "baratos", "baratas", "deal", "deals",
})

DEAL_TAG = "oferta"

# 名称命中权重最高，其次标签，最后描述
NAME_WEIGHT = 3
TAG_WEIGHT = 2
DESCRIPTION_WEIGHT = 1


def normalize(text: str) -> str:
    """小写并去掉重音符号。"""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def tokenize(text: str) -> List[str]:
    return [t for t in re.findall(r"[a-z0-9]+", normalize(text)) if len(t) > 1 and t not in STOP_WORDS]


def _variants(term: str) -> Set[str]:
    # 粗略的单复数折叠：tomates -> tomate，yogures -> yogur
    out = {term}
    if len(term) > 3 and term.endswith("s"):
        out.add(term[:-1])
        if term.endswith("es"):
            out.add(term[:-2])
    return out


class KeywordRecommendationEngine:
    name = "keyword"

    def __init__(self, catalog: ProductCatalog, max_suggestions: int = 3):
        self._catalog = catalog
        self._max_suggestions = max_suggestions

    def recommend(
        self,
        context: Sequence[Message],
        cancel_token: Optional[CancelToken] = None,
    ) -> RecommendationResult:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        user_turns = [m for m in context if m.role is Role.USER]
        if not user_turns:
            return RecommendationResult(reply_text="¡Hola! Soy Cora. ¿Qué estás buscando hoy?")

        query = user_turns[-1].text
        terms = tokenize(query)
        products, deal = self._rank(terms)
        if not products and len(user_turns) > 1:
            # 追问（例如 "¿y más baratos?"）时带上上一轮的查询词
            products, deal = self._rank(tokenize(user_turns[-2].text) + terms)

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        products = products[: self._max_suggestions]
        return RecommendationResult(reply_text=self._reply(query, products, deal), products=tuple(products))

    def _rank(self, terms: List[str]) -> Tuple[List[Product], bool]:
        deal = any(t in DEAL_TERMS for t in terms)
        search_terms = [t for t in terms if t not in DEAL_TERMS]
        catalog = self._catalog.list_products()

        if search_terms:
            scored = [(self._score(p, search_terms), p) for p in catalog]
            # sorted 是稳定排序：同分保持目录顺序
            ranked = [p for score, p in sorted(scored, key=lambda sp: -sp[0]) if score > 0]
            if deal:
                ranked = sorted(ranked, key=lambda p: p.price_cents)
            return ranked, deal

        if deal:
            on_offer = [p for p in catalog if DEAL_TAG in (normalize(t) for t in p.tags)]
            return sorted(on_offer or catalog, key=lambda p: p.price_cents), True
        return [], False

    @staticmethod
    def _score(product: Product, terms: List[str]) -> int:
        fields: Dict[int, Set[str]] = {
            NAME_WEIGHT: set(tokenize(product.name)),
            TAG_WEIGHT: {tok for tag in product.tags for tok in tokenize(tag)},
            DESCRIPTION_WEIGHT: set(tokenize(product.description)),
        }
        score = 0
        for term in terms:
            variants = _variants(term)
            score += max((w for w, tokens in fields.items() if variants & tokens), default=0)
        return score

    @staticmethod
    def _reply(query: str, products: List[Product], deal: bool) -> str:
        if not products:
            return (
                f"No he encontrado productos para «{query.strip()}». "
                "¿Puedes darme más detalles?"
            )
        names = [p.name for p in products]
        listed = names[0] if len(names) == 1 else ", ".join(names[:-1]) + " y " + names[-1]
        if deal:
            return f"Estas son las mejores ofertas que tengo: {listed}."
        return f"Te recomiendo: {listed}."
