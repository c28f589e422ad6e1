"""Invariants every release must keep.

- Results are immutable and failed results never carry data
- Cache keys are stable, namespaced and prefixed
- Envelopes use the documented camelCase wire keys
- Configuration is frozen once resolved
"""

import dataclasses
import json

import pytest

from transmute import FrozenConfig, TransformResult, fingerprint
from transmute.core.types import TransformStatus
from transmute.dispatch.envelope import JobEnvelope, RetryPolicy
from transmute.pipeline.registry import HandlerDescriptor

pytestmark = pytest.mark.contract


def test_results_are_immutable():
    result = TransformResult.successful("x")
    with pytest.raises(dataclasses.FrozenInstanceError):
        result.data = "y"  # type: ignore[misc]


@pytest.mark.parametrize("status", list(TransformStatus))
def test_failed_status_and_data_are_mutually_exclusive(status):
    if status is TransformStatus.FAILED:
        with pytest.raises(ValueError):
            TransformResult(status, data="x")
    else:
        assert TransformResult(status, data="x").data == "x"


def test_fingerprint_is_stable_across_calls_and_orderings():
    keys = {
        fingerprint("result", "content", "id", {"a": 1, "b": [1, 2]}),
        fingerprint("result", "content", "id", {"b": [1, 2], "a": 1}),
    }
    assert len(keys) == 1
    (key,) = keys
    namespace, digest = key.split(":")
    assert namespace == "result"
    assert all(c in "0123456789abcdef" for c in digest)


def test_envelope_top_level_and_retry_keys():
    envelope = JobEnvelope.build(
        HandlerDescriptor(kind="identity", payload="acme.t"), "x", {}, RetryPolicy()
    )
    wire = json.loads(envelope.to_json())
    assert set(wire) == {"handler", "content", "context", "retry", "config"}
    assert set(wire["retry"]) == {
        "maxAttempts",
        "timeoutSeconds",
        "queue",
        "connection",
        "delaySeconds",
    }


def test_frozen_config_cannot_be_mutated():
    config = FrozenConfig()
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.model = "other"  # type: ignore[misc]
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.cache.prefix = "other"  # type: ignore[misc]


def test_package_exports_are_importable():
    import transmute

    missing = [name for name in transmute.__all__ if not hasattr(transmute, name)]
    assert missing == []
    assert transmute.__version__
