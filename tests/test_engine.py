"""Tests for the ReconciliationEngine."""
import pytest

from pbx_sync.sync import (
    ExtensionRecord,
    ReconciliationEngine,
    RuntimeSnapshot,
    SyncStatus,
    summarize_sync,
)


def runtime_for(record: ExtensionRecord, **overrides) -> RuntimeSnapshot:
    """Snapshot reporting exactly the record's configuration."""
    values = dict(
        number=record.number,
        registered=True,
        context=record.context,
        transport=record.transport,
        codecs=list(record.codecs),
        direct_media=record.direct_media,
        max_contacts=record.max_contacts,
        qualify_frequency=record.qualify_frequency,
    )
    values.update(overrides)
    return RuntimeSnapshot(**values)


@pytest.fixture
def engine():
    return ReconciliationEngine()


class TestCompare:
    """Tests for classification."""

    def test_match(self, engine):
        record = ExtensionRecord("101", secret="pw")

        infos = engine.compare([record], [runtime_for(record)])

        assert len(infos) == 1
        assert infos[0].status == SyncStatus.MATCH
        assert infos[0].differences == []
        assert infos[0].in_sync

    def test_codec_mismatch(self, engine):
        """Test the codec example: [ulaw] declared vs [ulaw, alaw] running."""
        record = ExtensionRecord("101", codecs=["ulaw"])

        infos = engine.compare([record], [runtime_for(record, codecs=["ulaw", "alaw"])])

        assert infos[0].status == SyncStatus.MISMATCH
        assert infos[0].differences == ["codecs"]

    def test_every_difference_reported_in_order(self, engine):
        record = ExtensionRecord("101")
        runtime = runtime_for(
            record,
            context="other",
            transport="transport-tcp",
            codecs=["opus"],
            direct_media=True,
            max_contacts=5,
            qualify_frequency=0,
        )

        infos = engine.compare([record], [runtime])

        assert infos[0].differences == [
            "context",
            "transport",
            "codecs",
            "direct_media",
            "max_contacts",
            "qualify_frequency",
        ]

    def test_declared_only(self, engine):
        infos = engine.compare([ExtensionRecord("101")], [])

        assert infos[0].status == SyncStatus.DECLARED_ONLY
        assert infos[0].runtime is None

    def test_runtime_only(self, engine):
        infos = engine.compare([], [RuntimeSnapshot("101", context="from-internal")])

        assert infos[0].status == SyncStatus.RUNTIME_ONLY
        assert infos[0].declared is None

    def test_unreported_fields_skipped(self, engine):
        """Test runtime fields left as None are not compared."""
        record = ExtensionRecord("101", direct_media=True, max_contacts=3)

        infos = engine.compare([record], [RuntimeSnapshot("101", context=record.context)])

        assert infos[0].status == SyncStatus.MATCH

    def test_codecs_case_insensitive_but_ordered(self, engine):
        record = ExtensionRecord("101", codecs=["ULAW", "alaw"])

        same = engine.compare([record], [runtime_for(record, codecs=["ulaw", "ALAW"])])
        reordered = engine.compare([record], [runtime_for(record, codecs=["alaw", "ulaw"])])

        assert same[0].status == SyncStatus.MATCH
        assert reordered[0].differences == ["codecs"]

    def test_secret_and_name_not_compared(self, engine):
        record = ExtensionRecord("101", display_name="Alice", secret="one")
        runtime = runtime_for(record, secret="two", caller_id='"Bob" <101>')

        assert engine.compare([record], [runtime])[0].status == SyncStatus.MATCH

    def test_disabled_without_runtime_matches(self, engine):
        infos = engine.compare([ExtensionRecord("101", enabled=False)], [])

        assert infos[0].status == SyncStatus.MATCH

    def test_disabled_with_runtime_mismatches(self, engine):
        record = ExtensionRecord("101", enabled=False)

        infos = engine.compare([record], [runtime_for(record)])

        assert infos[0].status == SyncStatus.MISMATCH
        assert infos[0].differences == ["enabled"]

    def test_duplicate_numbers_first_wins(self, engine):
        first = ExtensionRecord("101", context="a")
        second = ExtensionRecord("101", context="b")

        infos = engine.compare([first, second], [RuntimeSnapshot("101", context="a")])

        assert len(infos) == 1
        assert infos[0].declared is first
        assert infos[0].status == SyncStatus.MATCH

    def test_totality_and_order(self, engine):
        """Test every number appears exactly once, in numeric order."""
        declared = [ExtensionRecord(n) for n in ("1000", "20", "3", "101")]
        runtime = [RuntimeSnapshot(n, context="from-internal") for n in ("3", "7", "20")]

        infos = engine.compare(declared, runtime)
        numbers = [info.number for info in infos]

        assert numbers == ["3", "7", "20", "101", "1000"]
        assert len(set(numbers)) == len(numbers)

    def test_repeated_compare_is_stable(self, engine):
        declared = [ExtensionRecord(n) for n in ("5", "1", "3")]
        runtime = [RuntimeSnapshot(n, context="x") for n in ("4", "2")]

        first = engine.compare(declared, runtime)
        second = engine.compare(list(reversed(declared)), list(reversed(runtime)))

        assert [(i.number, i.status) for i in first] == [(i.number, i.status) for i in second]


class TestSummarize:
    """Tests for summarize and the text report."""

    def test_counts(self, engine):
        infos = engine.compare(
            [ExtensionRecord("1"), ExtensionRecord("2"), ExtensionRecord("3", codecs=["opus"])],
            [
                RuntimeSnapshot("2", context="from-internal"),
                RuntimeSnapshot("3", context="from-internal", codecs=["ulaw"]),
                RuntimeSnapshot("4", context="from-internal"),
            ],
        )

        summary = engine.summarize(infos)

        assert summary.to_dict() == {
            "total": 4,
            "matched": 1,
            "declared_only": 1,
            "runtime_only": 1,
            "mismatched": 1,
        }
        assert summary.needs_action

    def test_empty(self, engine):
        summary = engine.summarize([])

        assert summary.total == 0
        assert not summary.needs_action

    def test_report_in_sync(self, engine):
        record = ExtensionRecord("101")

        report = summarize_sync(engine.compare([record], [runtime_for(record)]))

        assert report == "All 1 extensions in sync"

    def test_report_lists_drift_without_secrets(self, engine):
        record = ExtensionRecord("101", codecs=["ulaw"], secret="s3cret")
        infos = engine.compare(
            [record, ExtensionRecord("102")],
            [runtime_for(record, codecs=["ulaw", "alaw"], secret="0ther"),
             RuntimeSnapshot("103", context="x")],
        )

        report = summarize_sync(infos)

        assert "[~] 101:" in report
        assert "codecs: declared=ulaw, runtime=ulaw,alaw" in report
        assert "[+] 102" in report
        assert "[-] 103" in report
        assert "s3cret" not in report
        assert "0ther" not in report
