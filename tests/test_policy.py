"""Tests for SyncPolicy against real stores and a fake reload trigger."""
import pytest

from pbx_sync.config_store import ConfigSectionStore
from pbx_sync.declared import DeclaredStoreError, InvalidRecord, YamlDeclaredStore
from pbx_sync.errors import (
    IOFailure,
    NotInDeclaredStore,
    NotInRuntime,
    ProbeError,
    ReloadFailure,
    RenderError,
    SectionNotFound,
)
from pbx_sync.pjsip import PjsipProbe, PjsipRenderer
from pbx_sync.sync import (
    Conflict,
    ExtensionRecord,
    SyncDirection,
    SyncPolicy,
    SyncResult,
    SyncStatus,
    extension_label,
    run_startup_sync,
)
from pbx_sync.utils import ChangeTracker

HAND_WRITTEN_105 = (
    "[105]\n"
    "type=endpoint\n"
    "context=from-internal\n"
    "allow=ulaw\n"
    'callerid="Bob" <105>\n'
    "\n"
    "[105]\n"
    "type=auth\n"
    "auth_type=userpass\n"
    "password=bobpw\n"
)


class FakeReloader:
    """Counts reloads, optionally failing them."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = 0

    def reload(self) -> None:
        self.calls += 1
        if self.fail:
            raise ReloadFailure("reload refused")


class BrokenProbe:
    def __init__(self, error: Exception):
        self.error = error

    def snapshot(self):
        raise self.error

    def is_registered(self, number):
        return False


class FailingRenderer(PjsipRenderer):
    """Raises a non-library error for one extension."""

    def __init__(self, failing: str):
        super().__init__()
        self.failing = failing

    def render_section(self, record):
        if record.number == self.failing:
            raise TypeError("unexpected value")
        return super().render_section(record)


@pytest.fixture
def conf(tmp_path):
    path = tmp_path / "pjsip.conf"
    path.write_text("; pjsip.conf\n")
    return path


@pytest.fixture
def declared(tmp_path):
    return YamlDeclaredStore(tmp_path / "extensions")


@pytest.fixture
def reloader():
    return FakeReloader()


@pytest.fixture
def policy(conf, declared, reloader, tmp_path):
    return SyncPolicy(
        declared=declared,
        probe=PjsipProbe(conf),
        sections=ConfigSectionStore(conf, backup_dir=tmp_path / "backups"),
        renderer=PjsipRenderer(),
        reloader=reloader,
        tracker=ChangeTracker(user="test"),
    )


def declare(declared, number, **kwargs):
    kwargs.setdefault("secret", f"pw{number}")
    record = ExtensionRecord(number, **kwargs)
    declared.upsert(record)
    return record


def statuses(policy):
    return {info.number: info.status for info in policy.compare()}


class TestPushSingle:
    """Tests for sync_declared_to_runtime."""

    def test_convergence(self, policy, declared, reloader):
        """Test a declared-only extension matches after being pushed."""
        declare(declared, "101")
        assert statuses(policy) == {"101": SyncStatus.DECLARED_ONLY}

        result = policy.sync_declared_to_runtime("101")

        assert result.success
        assert result.reload_error is None
        assert reloader.calls == 1
        assert statuses(policy) == {"101": SyncStatus.MATCH}
        assert policy.sections.has_active_section(extension_label("101"))

    def test_push_takes_backup(self, policy, declared):
        declare(declared, "101")

        policy.sync_declared_to_runtime("101")

        assert len(policy.sections.list_backups()) == 1

    def test_repeated_push_is_noop(self, policy, declared, reloader, conf):
        declare(declared, "101")
        policy.sync_declared_to_runtime("101")
        before = conf.read_bytes()

        policy.sync_declared_to_runtime("101")

        assert conf.read_bytes() == before
        assert reloader.calls == 1

    def test_push_resolves_mismatch(self, policy, declared):
        declare(declared, "101", codecs=["ulaw", "alaw"])
        policy.sync_declared_to_runtime("101")
        declare(declared, "101", codecs=["opus"])
        assert statuses(policy) == {"101": SyncStatus.MISMATCH}

        policy.sync_declared_to_runtime("101")

        assert statuses(policy) == {"101": SyncStatus.MATCH}

    def test_missing_record(self, policy, conf, reloader):
        before = conf.read_bytes()

        with pytest.raises(NotInDeclaredStore):
            policy.sync_declared_to_runtime("999")

        assert conf.read_bytes() == before
        assert reloader.calls == 0

    def test_reload_failure_is_soft(self, policy, declared, conf):
        policy.reloader = FakeReloader(fail=True)
        declare(declared, "101")

        result = policy.sync_declared_to_runtime("101")

        assert result.success
        assert result.reload_error == "reload refused"
        assert "manual reload" in result.warning
        assert "[101]" in conf.read_text()

    def test_unrenderable_record(self, policy, declared, conf):
        declare(declared, "101", secret="")
        before = conf.read_bytes()

        with pytest.raises(RenderError):
            policy.sync_declared_to_runtime("101")

        assert conf.read_bytes() == before


class TestPullSingle:
    """Tests for sync_runtime_to_declared."""

    def test_pull_runtime_only(self, policy, declared, conf):
        conf.write_text(conf.read_text() + HAND_WRITTEN_105)
        assert statuses(policy) == {"105": SyncStatus.RUNTIME_ONLY}

        policy.sync_runtime_to_declared("105")

        record = declared.get("105")
        assert record.display_name == "Bob"
        assert record.secret == "bobpw"
        assert record.codecs == ["ulaw"]
        assert record.enabled is True
        assert statuses(policy) == {"105": SyncStatus.MATCH}

    def test_pull_keeps_name_and_secret(self, policy, declared, conf):
        declare(declared, "105", display_name="Robert", secret="keep", codecs=["opus"])
        conf.write_text(conf.read_text() + HAND_WRITTEN_105)

        policy.sync_runtime_to_declared("105")

        record = declared.get("105")
        assert record.display_name == "Robert"
        assert record.secret == "keep"
        assert record.codecs == ["ulaw"]

    def test_pull_without_caller_id(self, policy, declared, conf):
        conf.write_text("[106]\ntype=endpoint\ncontext=from-internal\n")

        policy.sync_runtime_to_declared("106")

        assert declared.get("106").display_name == "Extension 106"

    def test_missing_runtime(self, policy, declared):
        with pytest.raises(NotInRuntime):
            policy.sync_runtime_to_declared("105")

        assert declared.get("105") is None


class TestBulk:
    """Tests for the bulk sync operations."""

    def test_push_all_partial_failure(self, policy, declared, reloader):
        """Test one bad item out of three is reported, the rest applied."""
        declare(declared, "101")
        declare(declared, "102", secret="")
        declare(declared, "103")

        result = policy.sync_all_declared_to_runtime()

        assert result.direction == SyncDirection.DECLARED_TO_RUNTIME
        assert result.success_count == 2
        assert [e.number for e in result.errors] == ["102"]
        assert isinstance(result.errors[0].error, RenderError)
        assert result.partial
        assert result.as_tuple()[0] == 2
        assert reloader.calls == 1
        assert statuses(policy) == {
            "101": SyncStatus.MATCH,
            "102": SyncStatus.DECLARED_ONLY,
            "103": SyncStatus.MATCH,
        }

    def test_push_all_nothing_to_do(self, policy, reloader):
        result = policy.sync_all_declared_to_runtime()

        assert result.success_count == 0
        assert result.errors == []
        assert reloader.calls == 0

    def test_pull_all_partial_failure(self, policy, declared, conf):
        conf.write_text(
            "[201]\ntype=endpoint\ncontext=from-internal\nallow=ulaw\n\n"
            "[202]\ntype=endpoint\ncontext=from-internal\nallow=g729!\n"
        )

        result = policy.sync_all_runtime_to_declared()

        assert result.success_count == 1
        assert [e.number for e in result.errors] == ["202"]
        assert isinstance(result.errors[0].error, InvalidRecord)
        assert declared.get("201") is not None
        assert declared.get("202") is None

    def test_pull_all_includes_mismatches(self, policy, declared, conf):
        declare(declared, "105", codecs=["opus"])
        conf.write_text(conf.read_text() + HAND_WRITTEN_105)

        result = policy.sync_all_runtime_to_declared()

        assert result.success_count == 1
        assert declared.get("105").codecs == ["ulaw"]

    def test_numeric_secret_in_yaml(self, policy, declared):
        declare(declared, "100")
        (declared.base_dir / "101.yaml").write_text("secret: 1234\n")
        declare(declared, "102")

        result = policy.sync_all_declared_to_runtime()

        assert result.success_count == 3
        assert result.errors == []
        assert "password=1234" in policy.sections.get_section(extension_label("101")).body

    def test_unexpected_error_is_item_error(self, policy, declared):
        """Test a non-library exception for one item does not stop the pass."""
        policy.renderer = FailingRenderer("101")
        for number in ("100", "101", "102"):
            declare(declared, number)

        result = policy.sync_all_declared_to_runtime()

        assert result.success_count == 2
        assert [e.number for e in result.errors] == ["101"]
        assert isinstance(result.errors[0].error, TypeError)

    def test_push_all_skips_unreadable_record(self, policy, declared, reloader):
        declare(declared, "100")
        (declared.base_dir / "101.yaml").write_text("number: [unclosed\n")
        declare(declared, "102")

        result = policy.sync_all_declared_to_runtime()

        assert result.success_count == 2
        assert [e.number for e in result.errors] == ["101"]
        assert isinstance(result.errors[0].error, DeclaredStoreError)
        assert policy.sections.has_active_section(extension_label("100"))
        assert policy.sections.has_active_section(extension_label("102"))
        assert reloader.calls == 1

    def test_pull_all_leaves_unreadable_record(self, policy, declared, conf):
        conf.write_text(
            "[100]\ntype=endpoint\ncontext=from-internal\nallow=ulaw\n\n"
            "[101]\ntype=endpoint\ncontext=from-internal\nallow=ulaw\n"
        )
        broken = declared.base_dir / "101.yaml"
        broken.write_text("number: [unclosed\n")

        result = policy.sync_all_runtime_to_declared()

        assert result.success_count == 1
        assert [e.number for e in result.errors] == ["101"]
        assert declared.get("100") is not None
        assert broken.read_text() == "number: [unclosed\n"


class TestAutoSync:
    """Tests for the automatic pass."""

    def test_codec_conflict_left_untouched(self, policy, declared, conf, reloader):
        """Test the [ulaw] vs [ulaw, alaw] example is reported, not resolved."""
        running = ExtensionRecord("101", secret="pw101", codecs=["ulaw", "alaw"])
        policy.sections.write_section(
            extension_label("101"), PjsipRenderer().render_section(running)
        )
        declare(declared, "101", codecs=["ulaw"])
        declared_bytes = (declared.base_dir / "101.yaml").read_bytes()
        conf_bytes = conf.read_bytes()

        result = policy.auto_sync()

        assert result.conflicts == [Conflict("101", ["codecs"])]
        assert result.has_conflicts
        assert result.pushed == 0
        assert result.pulled == 0
        assert (declared.base_dir / "101.yaml").read_bytes() == declared_bytes
        assert conf.read_bytes() == conf_bytes
        assert reloader.calls == 0

    def test_mixed_pass(self, policy, declared, conf, reloader):
        declare(declared, "102")
        declare(declared, "103", codecs=["ulaw"])
        policy.sync_all_declared_to_runtime()
        declare(declared, "103", codecs=["opus"])
        declare(declared, "101")
        conf.write_text(conf.read_text() + "\n" + HAND_WRITTEN_105)
        policy.reloader = reloader = FakeReloader()

        result = policy.auto_sync()

        assert result.total_processed == 4
        assert result.pushed == 1
        assert result.pulled == 1
        assert result.already_in_sync == 1
        assert [c.number for c in result.conflicts] == ["103"]
        assert result.errors == []
        assert reloader.calls == 1
        assert statuses(policy) == {
            "101": SyncStatus.MATCH,
            "102": SyncStatus.MATCH,
            "103": SyncStatus.MISMATCH,
            "105": SyncStatus.MATCH,
        }

    def test_item_errors_collected(self, policy, declared):
        declare(declared, "101")
        declare(declared, "102", secret="")

        result = policy.auto_sync()

        assert result.pushed == 1
        assert [e.number for e in result.errors] == ["102"]
        assert "Errors: 1" in result.summary()

    def test_second_pass_is_quiet(self, policy, declared, reloader):
        declare(declared, "101")
        policy.auto_sync()

        result = policy.auto_sync()

        assert result.pushed == 0
        assert result.already_in_sync == 1
        assert reloader.calls == 1

    def test_comparison_failure_propagates(self, policy):
        policy.probe = BrokenProbe(ProbeError("cannot read"))

        with pytest.raises(ProbeError):
            policy.auto_sync()

    def test_unreadable_record_reported(self, policy, declared, conf):
        declare(declared, "100")
        broken = declared.base_dir / "101.yaml"
        broken.write_text("number: [unclosed\n")
        conf.write_text(conf.read_text() + "[101]\ntype=endpoint\ncontext=from-internal\n")

        result = policy.auto_sync()

        assert result.total_processed == 2
        assert result.pushed == 1
        assert result.pulled == 0
        assert [e.number for e in result.errors] == ["101"]
        assert broken.read_text() == "number: [unclosed\n"


class TestStartupSync:
    """Tests for run_startup_sync."""

    def test_returns_result(self, policy, declared):
        declare(declared, "101")

        result = run_startup_sync(policy)

        assert isinstance(result, SyncResult)
        assert result.pushed == 1

    @pytest.mark.parametrize("error", [ProbeError("cannot read"), RuntimeError("boom")])
    def test_failure_does_not_raise(self, policy, error):
        policy.probe = BrokenProbe(error)

        assert run_startup_sync(policy) is None


class TestAdministration:
    """Tests for enable/disable, removal and static blocks."""

    def test_disable_comments_out(self, policy, declared, reloader):
        declare(declared, "101")
        policy.sync_declared_to_runtime("101")

        result = policy.set_enabled("101", False)

        assert result.action == "disable"
        section = policy.sections.get_section(extension_label("101"))
        assert section is not None
        assert section.active is False
        assert declared.get("101").enabled is False
        assert statuses(policy) == {"101": SyncStatus.MATCH}
        assert reloader.calls == 2

    def test_enable_restores(self, policy, declared):
        record = declare(declared, "101")
        policy.sync_declared_to_runtime("101")
        policy.set_enabled("101", False)

        policy.set_enabled("101", True)

        section = policy.sections.get_section(extension_label("101"))
        assert section.active is True
        assert section.body == PjsipRenderer().render_section(record)
        assert statuses(policy) == {"101": SyncStatus.MATCH}

    def test_disabled_without_section(self, policy, declared, conf, reloader):
        declare(declared, "101", enabled=False)
        before = conf.read_bytes()

        policy.sync_declared_to_runtime("101")

        assert conf.read_bytes() == before
        assert reloader.calls == 0

    def test_delete_extension(self, policy, declared, reloader):
        declare(declared, "101")
        policy.sync_declared_to_runtime("101")

        policy.delete_extension("101")

        assert declared.get("101") is None
        assert policy.sections.get_section(extension_label("101")) is None
        assert policy.compare() == []
        assert reloader.calls == 2


    def test_failed_delete_keeps_record(self, policy, declared, conf, tmp_path):
        """Test a section that cannot be removed keeps its declared record."""
        declare(declared, "101")
        policy.sync_declared_to_runtime("101")
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        policy.sections = ConfigSectionStore(conf, backup_dir=blocker / "backups")

        with pytest.raises(IOFailure):
            policy.delete_extension("101")

        assert declared.get("101") is not None
        assert statuses(policy) == {"101": SyncStatus.MATCH}
        assert policy.auto_sync().pulled == 0

    def test_disable_hand_written_extension(self, policy, declared, conf, reloader):
        """Test a disabled record that only exists outside managed sections fails."""
        conf.write_text(conf.read_text() + HAND_WRITTEN_105)
        declare(declared, "105", enabled=False)
        before = conf.read_bytes()

        with pytest.raises(SectionNotFound):
            policy.sync_declared_to_runtime("105")

        result = policy.sync_all_declared_to_runtime()

        assert result.success_count == 0
        assert [e.number for e in result.errors] == ["105"]
        assert conf.read_bytes() == before
        assert reloader.calls == 0

    def test_delete_missing(self, policy):
        with pytest.raises(NotInDeclaredStore):
            policy.delete_extension("101")

    def test_remove_from_runtime(self, policy, declared):
        declare(declared, "101")
        policy.sync_declared_to_runtime("101")

        assert policy.remove_from_runtime("101").success is True
        assert statuses(policy) == {"101": SyncStatus.DECLARED_ONLY}
        assert policy.remove_from_runtime("101").success is False

    def test_remove_from_declared(self, policy, declared):
        declare(declared, "101")

        policy.remove_from_declared("101")

        assert declared.get("101") is None
        with pytest.raises(NotInDeclaredStore):
            policy.remove_from_declared("101")

    def test_ensure_transports(self, policy, conf):
        assert policy.ensure_transports() is True
        assert policy.ensure_transports() is False

        text = conf.read_text()
        assert text.count("[transport-udp]") == 1
        assert policy.compare() == []

    def test_summary(self, policy, declared, conf):
        declare(declared, "101")
        conf.write_text(conf.read_text() + HAND_WRITTEN_105)

        summary = policy.summary()

        assert summary.total == 2
        assert summary.declared_only == 1
        assert summary.runtime_only == 1
