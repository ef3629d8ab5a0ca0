"""Tests for the event model and its line formats."""

import pytest

from rangesync.exceptions import (
    MalformedDescriptorError,
    MalformedEventError,
    MalformedLowestIDError,
    MalformedRepresentationError,
)
from rangesync.feedback import AuditEventType, Descriptor, Event, LowestID
from rangesync.feedback import codec
from rangesync.ranges import SortedRangeSet


class TestCodec:
    """Tests for the escaping codec."""

    def test_encode_special_characters(self):
        assert codec.encode("a,b c$d\ne\rf") == "a$kb$sc$$d$ne$rf"

    def test_decode_reverses_encode(self):
        value = "weird, value $ with\nnewlines\r and spaces"
        assert codec.decode(codec.encode(value)) == value

    def test_plain_text_untouched(self):
        assert codec.encode("target-01") == "target-01"

    @pytest.mark.parametrize("value", ["abc$", "a$xb"])
    def test_decode_bad_escape(self, value):
        with pytest.raises(MalformedRepresentationError):
            codec.decode(value)


class TestEvent:
    """Tests for Event."""

    def test_representation_without_properties(self):
        event = Event("gwID", 123, 1, 888888, 1)
        assert event.to_representation() == "gwID,123,1,888888,1"

    def test_representation_with_properties(self):
        event = Event("tid 1", 1, 2, 1000, 2001, {"name": "bundle,x"})
        line = event.to_representation()
        assert line == "tid$s1,1,2,1000,2001,name,bundle$kx"
        parsed = Event.parse(line)
        assert parsed.target_id == "tid 1"
        assert parsed.properties == {"name": "bundle,x"}
        assert parsed.type == AuditEventType.DEPLOYMENTADMIN_INSTALL

    def test_parse_strips_newline(self):
        assert Event.parse("t,1,2,3,4\n").id == 2

    @pytest.mark.parametrize(
        "line",
        [
            "t,1,2,3",  # too few fields
            "t,1,2,3,4,key",  # dangling property key
            "t,x,2,3,4",  # non-numeric store
            ",1,2,3,4",  # empty target
            "t,1,-2,3,4",  # negative id
            "t$,1,2,3,4",  # bad escape
        ],
    )
    def test_parse_malformed(self, line):
        with pytest.raises(MalformedEventError):
            Event.parse(line)

    def test_equality_by_key_only(self):
        a = Event("t", 1, 5, 100, 1, {"a": "1"})
        b = Event("t", 1, 5, 999, 2, {"b": "2"})
        assert a == b
        assert len({a, b}) == 1

    def test_ordering(self):
        events = [Event("t", 2, 1, 0, 1), Event("t", 1, 3, 0, 1), Event("t", 1, 2, 0, 1)]
        assert [e.key for e in sorted(events)] == [("t", 1, 2), ("t", 1, 3), ("t", 2, 1)]

    def test_event_type_codes(self):
        assert AuditEventType.BUNDLE_INSTALLED == 1
        assert AuditEventType.FRAMEWORK_STARTED == 1005
        assert AuditEventType.TARGETPROPERTIES_SET == 4001


class TestDescriptor:
    """Tests for Descriptor."""

    def test_representation(self):
        d = Descriptor("gw,1", 7, SortedRangeSet.parse("1-3,5"))
        assert d.to_representation() == "gw$k1,7,1-3,5"

    def test_parse_multi_range(self):
        d = Descriptor.parse("gw$k1,7,1-3,5")
        assert d.target_id == "gw,1"
        assert d.store_id == 7
        assert d.range_set == SortedRangeSet.parse("1-3,5")

    def test_parse_empty_range(self):
        d = Descriptor.parse("tid,1,")
        assert not d.range_set
        assert Descriptor.parse("tid,1").range_set == SortedRangeSet.empty()

    @pytest.mark.parametrize("line", ["tid", "tid,x,1-2", ",1,1-2", "tid,1,5-2"])
    def test_parse_malformed(self, line):
        with pytest.raises(MalformedDescriptorError):
            Descriptor.parse(line)

    def test_key_and_with_range(self):
        d = Descriptor("t", 1, SortedRangeSet.empty())
        assert d.key == ("t", 1)
        assert d.with_range(SortedRangeSet.parse("4")).range_set.to_representation() == "4"


class TestLowestID:
    """Tests for LowestID."""

    def test_round_trip(self):
        lid = LowestID("t 1", 2, 50)
        assert lid.to_representation() == "t$s1,2,50"
        assert LowestID.parse(lid.to_representation()) == lid

    @pytest.mark.parametrize("line", ["t,1", "t,1,2,3", "t,1,x", "t,1,-1", ",1,2"])
    def test_parse_malformed(self, line):
        with pytest.raises(MalformedLowestIDError):
            LowestID.parse(line)
