import pytest

from asmshell.error import InvalidStateError
from asmshell.model.payload import EncodedPayload, Relocation


def test_data_requires_fill():
    payload = EncodedPayload(b"\xeb\xfe", (Relocation(0, "target"),))
    assert not payload.is_filled
    with pytest.raises(InvalidStateError):
        _ = payload.data


def test_fill_is_idempotent():
    payload = EncodedPayload(b"\xe8\xfb\xff\xff\xff", (Relocation(1, "printf"),))
    first = payload.fill()
    second = payload.fill()
    assert first == second == b"\xe8\xfb\xff\xff\xff"
    assert payload.is_filled
    assert payload.data == first


def test_unresolved_targets_keep_order():
    payload = EncodedPayload(
        b"\x00" * 8, (Relocation(4, "second"), Relocation(0, "first"), Relocation(None, "third"))
    )
    assert payload.unresolved_targets == ("second", "first", "third")
    assert len(payload) == 8


def test_fill_writes_placeholders():
    payload = EncodedPayload(
        b"\x90\xe8\xff\xff\xff\xff", (Relocation(2, "printf", 4, b"\xfa\xff\xff\xff"),)
    )
    assert payload.fill() == b"\x90\xe8\xfa\xff\xff\xff"
    assert payload.data == b"\x90\xe8\xfa\xff\xff\xff"
    assert len(payload) == 6


def test_fill_skips_fields_without_placeholder():
    payload = EncodedPayload(b"\xeb\xff", (Relocation(1, "target", 1), Relocation(None, "other")))
    assert payload.fill() == b"\xeb\xff"


def test_unresolved_targets_are_listed_once():
    payload = EncodedPayload(
        b"\x00" * 15, (Relocation(1, "first"), Relocation(6, "second"), Relocation(11, "first"))
    )
    assert payload.unresolved_targets == ("first", "second")
