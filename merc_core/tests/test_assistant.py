import threading

import pytest

from merc_core.agents.assistant import AssistantOrchestrator
from merc_core.cart.mutator import CartMutator
from merc_core.domain.exceptions import BusinessError, MalformedResponseError, UnavailableError, UnknownProductError
from merc_core.domain.models import Product, RecommendationResult, Role
from merc_core.infrastructure.storage.memory_store import InMemoryCatalog, InMemoryMessageStore
from merc_core.providers.chat_client import ChatCompletionsClient
from merc_core.providers.registry import GLM_CONFIG
from merc_core.recommendation.llm import LlmRecommendationEngine


PRODUCTS = [
    Product(id="p1", name="Leche", image_ref="leche", price_cents=95),
    Product(id="p2", name="Pan", image_ref="pan", price_cents=60),
    Product(id="p3", name="Pasta", image_ref="pasta", price_cents=85),
]


class FakeEngine:
    name = "fake"

    def __init__(self, products=PRODUCTS, reply="Aquí tienes las ofertas", error=None):
        self.products = products
        self.reply = reply
        self.error = error
        self.calls = []

    def recommend(self, context, cancel_token=None):
        self.calls.append(list(context))
        if self.error is not None:
            raise self.error
        return RecommendationResult(reply_text=self.reply, products=tuple(self.products))


def make_assistant(engine=None):
    catalog = InMemoryCatalog(PRODUCTS)
    return AssistantOrchestrator(engine=engine or FakeEngine(), cart=CartMutator(catalog))


def test_send_success_scenario():
    assistant = make_assistant()
    result = assistant.send("ofertas de hoy")
    assert result.status == "sent"
    state = assistant.state
    assert len(state.messages) == 2
    assert state.messages[0].role is Role.USER
    assert state.messages[0].text == "ofertas de hoy"
    assert state.messages[1].role is Role.ASSISTANT
    assert state.messages[1].text == "Aquí tienes las ofertas"
    assert len(state.suggested_products) == 3
    assert state.is_processing is False
    assert state.error_message is None


def test_send_unavailable_scenario():
    assistant = make_assistant(FakeEngine(error=UnavailableError()))
    result = assistant.send("ofertas de hoy")
    assert result.status == "failed"
    assert isinstance(result.error, UnavailableError)
    state = assistant.state
    assert len(state.messages) == 1
    assert state.messages[0].role is Role.USER
    assert state.error_message == UnavailableError.default_message
    assert state.is_processing is False
    assert state.suggested_products == ()


def test_send_trims_input():
    assistant = make_assistant()
    assistant.send("  leche  ")
    assert assistant.state.messages[0].text == "leche"


@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
def test_send_blank_is_noop(text):
    engine = FakeEngine()
    assistant = make_assistant(engine)
    seen = []
    assistant.subscribe(seen.append)
    before = assistant.state
    result = assistant.send(text)
    assert result.status == "rejected"
    assert assistant.state == before
    assert engine.calls == []
    assert seen == []


def test_send_while_processing_is_rejected():
    inner_results = []

    class ReentrantEngine(FakeEngine):
        def recommend(self, context, cancel_token=None):
            inner_results.append(assistant.send("otra pregunta"))
            inner_results.append(len(assistant.state.messages))
            assert assistant.state.is_processing is True
            return super().recommend(context, cancel_token)

    assistant = make_assistant(ReentrantEngine())
    result = assistant.send("leche")
    assert result.status == "sent"
    assert inner_results[0].status == "rejected"
    assert inner_results[1] == 1
    assert len(assistant.state.messages) == 2


def test_concurrent_send_from_other_thread_is_rejected():
    started = threading.Event()
    release = threading.Event()

    class BlockingEngine(FakeEngine):
        def recommend(self, context, cancel_token=None):
            started.set()
            release.wait(timeout=5)
            return super().recommend(context, cancel_token)

    assistant = make_assistant(BlockingEngine())
    results = []
    thread = assistant.send_in_background("leche", on_done=results.append)
    assert started.wait(timeout=5)
    assert assistant.send("pan").status == "rejected"
    release.set()
    thread.join(timeout=5)
    assert results[0].status == "sent"
    assert len(assistant.state.messages) == 2


def test_message_count_grows_by_one_or_two():
    engine = FakeEngine()
    assistant = make_assistant(engine)
    outcomes = [None, MalformedResponseError(), None, UnavailableError(), None]
    previous = 0
    for i, err in enumerate(outcomes):
        engine.error = err
        assistant.send(f"pregunta {i}")
        count = len(assistant.state.messages)
        assert count - previous == (1 if err else 2)
        previous = count


def test_error_cleared_on_next_send_and_products_replaced():
    engine = FakeEngine(error=MalformedResponseError())
    assistant = make_assistant(engine)
    assistant.send("hola")
    assert assistant.state.error_message is not None

    engine.error = None
    engine.products = PRODUCTS[:1]
    assistant.send("leche")
    assert assistant.state.error_message is None
    assert [p.id for p in assistant.state.suggested_products] == ["p1"]

    engine.products = PRODUCTS[1:]
    assistant.send("pan y pasta")
    assert [p.id for p in assistant.state.suggested_products] == ["p2", "p3"]


def test_failed_cycle_resets_suggestions():
    engine = FakeEngine()
    assistant = make_assistant(engine)
    assistant.send("leche")
    assert len(assistant.state.suggested_products) == 3
    engine.error = UnavailableError()
    assistant.send("pan")
    assert assistant.state.suggested_products == ()


def test_unexpected_engine_exception_is_reported_as_unavailable():
    assistant = make_assistant(FakeEngine(error=RuntimeError("boom")))
    result = assistant.send("leche")
    assert result.status == "failed"
    assert isinstance(result.error, UnavailableError)
    assert assistant.state.is_processing is False
    # 之后仍然可以继续对话
    assistant._engine.error = None
    assert assistant.send("pan").status == "sent"


def test_engine_receives_full_context():
    engine = FakeEngine()
    assistant = make_assistant(engine)
    assistant.send("uno")
    assistant.send("dos")
    last_context = engine.calls[-1]
    assert [m.text for m in last_context] == ["uno", "Aquí tienes las ofertas", "dos"]


def test_context_is_bounded():
    engine = FakeEngine()
    catalog = InMemoryCatalog(PRODUCTS)
    assistant = AssistantOrchestrator(engine=engine, cart=CartMutator(catalog), max_context_messages=3)
    for i in range(4):
        assistant.send(f"q{i}")
    assert len(engine.calls[-1]) == 3
    assert engine.calls[-1][-1].text == "q3"


def test_cancel_during_cycle():
    class CancellingEngine(FakeEngine):
        def recommend(self, context, cancel_token=None):
            assert assistant.cancel() is True
            return super().recommend(context, cancel_token)

    assistant = make_assistant(CancellingEngine())
    result = assistant.send("leche")
    assert result.status == "failed"
    assert result.error.code == "CANCELLED"
    assert len(assistant.state.messages) == 1
    assert assistant.cancel() is False


def test_observers_see_processing_flag():
    assistant = make_assistant()
    snapshots = []
    unsubscribe = assistant.subscribe(snapshots.append)
    assistant.send("leche")
    assert snapshots[0].is_processing is True
    assert len(snapshots[0].messages) == 1
    assert snapshots[-1].is_processing is False
    assert len(snapshots[-1].messages) == 2

    unsubscribe()
    count = len(snapshots)
    assistant.send("pan")
    assert len(snapshots) == count


def test_failing_observer_does_not_break_cycle():
    assistant = make_assistant()

    def bad_observer(snap):
        raise ValueError("observer failure")

    assistant.subscribe(bad_observer)
    assert assistant.send("leche").status == "sent"
    assert assistant.state.is_processing is False


def test_add_to_cart_twice_increments_quantity():
    assistant = make_assistant()
    assistant.add_to_cart("p1")
    entry = assistant.add_to_cart("p1")
    assert entry.quantity == 2
    entries = assistant.cart.entries()
    assert len(entries) == 1
    assert entries[0].quantity == 2


def test_add_unknown_product_sets_error_and_leaves_cart():
    assistant = make_assistant()
    assistant.add_to_cart("p2")
    with pytest.raises(UnknownProductError):
        assistant.add_to_cart("nope")
    assert assistant.state.error_message == UnknownProductError.default_message
    assert [(e.product_id, e.quantity) for e in assistant.cart.entries()] == [("p2", 1)]

    assistant.clear_error()
    assert assistant.state.error_message is None


class FailingMessageStore(InMemoryMessageStore):
    def __init__(self, fail_on_call):
        super().__init__()
        self.calls = 0
        self.fail_on_call = fail_on_call

    def append(self, message):
        self.calls += 1
        if self.calls == self.fail_on_call:
            raise BusinessError(code="STORE_WRITE_ERROR", message="disk full")
        super().append(message)


def test_assistant_message_write_failure_is_reported():
    catalog = InMemoryCatalog(PRODUCTS)
    store = FailingMessageStore(fail_on_call=2)
    assistant = AssistantOrchestrator(engine=FakeEngine(), cart=CartMutator(catalog), store=store)
    result = assistant.send("leche")
    assert result.status == "failed"
    assert result.error.code == "STORE_WRITE_ERROR"
    state = assistant.state
    assert [m.text for m in state.messages] == ["leche"]
    assert state.error_message is not None
    assert "disk full" not in state.error_message
    assert state.suggested_products == ()
    assert state.is_processing is False
    # 恢复后可以继续对话
    assert assistant.send("pan").status == "sent"


def test_user_message_write_failure_is_reported():
    catalog = InMemoryCatalog(PRODUCTS)
    engine = FakeEngine()
    assistant = AssistantOrchestrator(
        engine=engine, cart=CartMutator(catalog), store=FailingMessageStore(fail_on_call=1)
    )
    result = assistant.send("leche")
    assert result.status == "failed"
    assert result.user_message is None
    assert assistant.state.messages == ()
    assert assistant.state.error_message is not None
    assert assistant.state.is_processing is False
    assert engine.calls == []


class FailingCartStore:
    def load(self):
        return {}

    def save(self, quantities):
        raise BusinessError(code="STORE_WRITE_ERROR", message="read-only filesystem")


def test_cart_write_failure_sets_error_and_keeps_cart():
    catalog = InMemoryCatalog(PRODUCTS)
    assistant = AssistantOrchestrator(engine=FakeEngine(), cart=CartMutator(catalog, store=FailingCartStore()))
    with pytest.raises(BusinessError) as exc:
        assistant.add_to_cart("p1")
    assert exc.value.code == "STORE_WRITE_ERROR"
    assert assistant.cart.quantity_of("p1") == 0
    assert assistant.state.error_message is not None


@pytest.mark.parametrize(
    "data",
    [
        {"choices": ["oops"]},
        {"choices": [{"message": {"content": 123}}]},
    ],
)
def test_unusable_backend_payload_reported_as_malformed(monkeypatch, data):
    class Settings:
        glm_api_key = "g-1234567890"
        glm_base_url = "https://open.bigmodel.cn/api/paas/v4"
        http_timeout = 1.0

    class Resp:
        status_code = 200
        text = ""

        def json(self):
            return data

    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, *a, **kw):
            return Resp()

    monkeypatch.setattr("httpx.Client", Client)
    catalog = InMemoryCatalog(PRODUCTS)
    engine = LlmRecommendationEngine(catalog, ChatCompletionsClient(GLM_CONFIG, Settings()))
    assistant = AssistantOrchestrator(engine=engine, cart=CartMutator(catalog))
    result = assistant.send("leche")
    assert result.status == "failed"
    assert result.error.code == "MALFORMED_RESPONSE"
    assert assistant.state.error_message == MalformedResponseError.default_message
