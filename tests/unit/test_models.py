from __future__ import annotations

import pydantic
import pytest

from callmeter import TimingRecord


def test_record_defaults():
    record = TimingRecord(service="svc", fn_name="fn", time=0)
    assert record.level is None
    assert record.params == {}
    assert record.created.tzinfo is not None


def test_record_rejects_negative_time():
    with pytest.raises(pydantic.ValidationError):
        TimingRecord(service="svc", fn_name="fn", time=-1)


def test_record_rejects_unknown_level():
    with pytest.raises(pydantic.ValidationError):
        TimingRecord(service="svc", fn_name="fn", time=1, level="warn")  # type: ignore[arg-type]


def test_record_is_immutable():
    record = TimingRecord(service="svc", fn_name="fn", time=1)
    with pytest.raises(pydantic.ValidationError):
        record.time = 2  # type: ignore[misc]


def test_record_params_keep_object_identity():
    err = RuntimeError("boom")
    record = TimingRecord(service="svc", fn_name="fn", time=1, params={"err": err})
    assert record.params["err"] is err
