import pytest

from hookhttp.config import MiddlewareConfig
from hookhttp.errors import ConfigurationError, MiddlewareExecutionError
from hookhttp.middleware import (
    MiddlewareEntry,
    MiddlewarePipeline,
    MiddlewareRegistry,
    global_registry,
    reset_global_registry,
    use,
)
from hookhttp.types import HeaderMap, IncomingResponse, ResponseHeader


class RequestOnly:
    def request(self, client, head, body):
        return head, body


class ResponseOnly:
    def response(self, resp):
        return None


class Both(RequestOnly, ResponseOnly):
    pass


class Nothing:
    pass


class NotCallable:
    request = "nope"


def _response() -> IncomingResponse:
    return IncomingResponse(status=200, response_header=ResponseHeader(status=200), response="body")


def test_entry_records_capabilities():
    assert MiddlewareEntry.build(RequestOnly).supports_request
    assert not MiddlewareEntry.build(RequestOnly).supports_response
    assert MiddlewareEntry.build(ResponseOnly).supports_response
    both = MiddlewareEntry.build(Both)
    assert both.supports_request and both.supports_response


def test_noop_middleware_is_accepted():
    entry = MiddlewareEntry.build(Nothing)

    assert not entry.supports_request
    assert not entry.supports_response


def test_structurally_invalid_middleware_is_rejected():
    with pytest.raises(ConfigurationError):
        MiddlewareEntry.build(NotCallable)
    with pytest.raises(ConfigurationError):
        MiddlewareEntry.build("not a definition")


def test_constructor_mismatch_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        MiddlewareEntry.build(Nothing, MiddlewareConfig(args=("unexpected",)))


def test_config_threads_args_kwargs_and_block():
    class Configured:
        def __init__(self, first, *, flag=False, block=None):
            self.first = first
            self.flag = flag
            self.block = block

    config = MiddlewareConfig(args=("value",), kwargs={"flag": True}, block=lambda: "deferred")
    entry = MiddlewareEntry.build(Configured, config)

    assert entry.instance.first == "value"
    assert entry.instance.flag is True
    assert entry.instance.block() == "deferred"


def test_config_rejects_non_callable_block():
    with pytest.raises(ValueError):
        MiddlewareConfig(block="not callable")


def test_registry_use_rejects_mixed_config_styles():
    registry = MiddlewareRegistry()
    with pytest.raises(ConfigurationError):
        registry.use(Nothing, "arg", config=MiddlewareConfig())


def test_frozen_registry_rejects_registration():
    registry = MiddlewareRegistry()
    registry.use(Nothing)
    registry.freeze()

    with pytest.raises(ConfigurationError):
        registry.use(RequestOnly)
    assert len(registry) == 1


def test_global_registry_reset():
    use(RequestOnly)
    assert len(global_registry()) == 1

    reset_global_registry()

    assert len(global_registry()) == 0


def test_pipeline_prepends_global_entries():
    use(RequestOnly)
    local = MiddlewareRegistry()
    local.use(ResponseOnly)

    pipeline = MiddlewarePipeline.for_registry(local)

    assert [entry.definition for entry in pipeline.entries] == [RequestOnly, ResponseOnly]


def test_pipeline_names_middleware_by_phase():
    pipeline = MiddlewarePipeline(
        [MiddlewareEntry.build(definition) for definition in (RequestOnly, Both, Nothing, ResponseOnly)]
    )

    assert pipeline.names("request") == ["RequestOnly", "Both"]
    assert pipeline.names("response") == ["Both", "ResponseOnly"]


def test_request_fold_threads_results_in_order():
    class Append:
        def __init__(self, suffix):
            self.suffix = suffix

        def request(self, client, head, body):
            head[f"X-{self.suffix}"] = self.suffix
            return head, body + self.suffix

    pipeline = MiddlewarePipeline(
        [MiddlewareEntry.build(Append, MiddlewareConfig(args=(suffix,))) for suffix in "abc"]
    )

    head, body = pipeline.apply_request(None, HeaderMap(), "")

    assert body == "abc"
    assert list(head) == ["X-a", "X-b", "X-c"]


def test_request_fold_normalizes_plain_mapping_heads():
    class PlainDict:
        def request(self, client, head, body):
            return {"Content-Type": "text/plain"}, body

    pipeline = MiddlewarePipeline([MiddlewareEntry.build(PlainDict)])
    head, _ = pipeline.apply_request(None, HeaderMap(), None)

    assert isinstance(head, HeaderMap)
    assert head["content-type"] == "text/plain"


def test_request_fold_rejects_malformed_return():
    class Malformed:
        def request(self, client, head, body):
            return head

    pipeline = MiddlewarePipeline([MiddlewareEntry.build(Malformed)])
    with pytest.raises(MiddlewareExecutionError) as excinfo:
        pipeline.apply_request(None, HeaderMap({"a": "1"}), None)

    assert excinfo.value.phase == "request"


def test_request_fold_propagates_configuration_errors():
    class Conflict:
        def request(self, client, head, body):
            raise ConfigurationError("conflict")

    pipeline = MiddlewarePipeline([MiddlewareEntry.build(Conflict)])
    with pytest.raises(ConfigurationError):
        pipeline.apply_request(None, HeaderMap(), None)


def test_response_fold_accepts_replacement_objects():
    replacement = _response()
    replacement.response = "replaced"

    class Replace:
        def response(self, resp):
            return replacement

    class Observe:
        def __init__(self):
            self.seen = None

        def response(self, resp):
            self.seen = resp.response

    observer = MiddlewareEntry.build(Observe)
    pipeline = MiddlewarePipeline([MiddlewareEntry.build(Replace), observer])

    result = pipeline.apply_response(_response())

    assert result is replacement
    assert observer.instance.seen == "replaced"


def test_response_fold_keeps_mutations_made_before_a_failure():
    class Mutate:
        def response(self, resp):
            resp.response_header["X-Before"] = "1"

    class Fail:
        def response(self, resp):
            raise RuntimeError("late failure")

    resp = _response()
    pipeline = MiddlewarePipeline([MiddlewareEntry.build(Mutate), MiddlewareEntry.build(Fail)])
    with pytest.raises(MiddlewareExecutionError):
        pipeline.apply_response(resp)

    assert resp.response_header["x-before"] == "1"
