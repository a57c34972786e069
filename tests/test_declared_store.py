"""Tests for the YAML declared store and record validation."""
import pytest
import yaml

from pbx_sync.declared import (
    DeclaredStoreError,
    InvalidRecord,
    RecordValidator,
    YamlDeclaredStore,
)
from pbx_sync.errors import NotInDeclaredStore
from pbx_sync.sync import ExtensionRecord


@pytest.fixture
def store(tmp_path):
    return YamlDeclaredStore(tmp_path / "extensions")


class TestYamlDeclaredStore:
    """Tests for YamlDeclaredStore."""

    def test_upsert_and_get(self, store):
        record = ExtensionRecord("101", display_name="Alice", secret="pw", codecs=["opus"])

        store.upsert(record)
        loaded = store.get("101")

        assert loaded == record
        assert (store.base_dir / "101.yaml").exists()

    def test_get_missing(self, store):
        assert store.get("999") is None

    def test_list_all_numeric_order(self, store):
        for number in ("1000", "20", "3"):
            store.upsert(ExtensionRecord(number))

        assert [r.number for r in store.list_all()] == ["3", "20", "1000"]
        assert store.list_numbers() == ["3", "20", "1000"]

    def test_update_replaces(self, store):
        store.upsert(ExtensionRecord("101", context="a"))
        store.upsert(ExtensionRecord("101", context="b"))

        assert store.get("101").context == "b"
        assert len(store.list_all()) == 1

    def test_delete(self, store):
        store.upsert(ExtensionRecord("101"))

        assert store.delete("101") is True
        assert store.delete("101") is False
        assert store.get("101") is None

    def test_set_enabled(self, store):
        store.upsert(ExtensionRecord("101"))

        store.set_enabled("101", False)

        assert store.get("101").enabled is False

    def test_set_enabled_missing(self, store):
        with pytest.raises(NotInDeclaredStore):
            store.set_enabled("101", False)

    def test_secret_optional_on_upsert(self, store):
        """Test records imported from the runtime may lack a secret."""
        store.upsert(ExtensionRecord("101", secret=""))

        assert store.get("101").secret == ""

    def test_invalid_record_rejected(self, store):
        with pytest.raises(InvalidRecord) as exc_info:
            store.upsert(ExtensionRecord("10a"))

        assert exc_info.value.number == "10a"
        assert store.list_all() == []

    def test_minimal_yaml_gets_defaults(self, store):
        (store.base_dir / "102.yaml").write_text("display_name: Bob\ncodecs: ulaw, g722\n")

        record = store.get("102")

        assert record.number == "102"
        assert record.context == "from-internal"
        assert record.codecs == ["ulaw", "g722"]
        assert record.enabled is True

    def test_broken_file_raises(self, store):
        """Test a broken record is an error, not a missing extension."""
        store.upsert(ExtensionRecord("101"))
        (store.base_dir / "102.yaml").write_text("codecs: [ulaw\n")

        with pytest.raises(DeclaredStoreError):
            store.list_all()

    def test_number_must_match_file_name(self, store):
        (store.base_dir / "103.yaml").write_text(yaml.safe_dump({"number": "104"}))

        with pytest.raises(DeclaredStoreError):
            store.get("103")

    def test_load_all_collects_unreadable(self, store):
        """Test readable records are returned next to the broken ones."""
        store.upsert(ExtensionRecord("100"))
        store.upsert(ExtensionRecord("102"))
        (store.base_dir / "101.yaml").write_text("number: [unclosed\n")

        records, errors = store.load_all()

        assert [r.number for r in records] == ["100", "102"]
        assert list(errors) == ["101"]
        assert isinstance(errors["101"], DeclaredStoreError)

    def test_numeric_values_read_as_text(self, store):
        (store.base_dir / "101.yaml").write_text(
            "secret: 1234\ncaller_id: 101\ncontext: 5\ncodecs: [ulaw, 722]\n"
        )

        record = store.get("101")

        assert record.secret == "1234"
        assert record.caller_id == "101"
        assert record.context == "5"
        assert record.codecs == ["ulaw", "722"]

    @pytest.mark.parametrize("word,expected", [
        ("'no'", False),
        ("'false'", False),
        ("'off'", False),
        ("'yes'", True),
        ("1", True),
    ])
    def test_quoted_flags(self, store, word, expected):
        (store.base_dir / "101.yaml").write_text(
            f"enabled: {word}\ndirect_media: {word}\nvoicemail_enabled: {word}\n"
        )

        record = store.get("101")

        assert record.enabled is expected
        assert record.direct_media is expected
        assert record.voicemail_enabled is expected

    def test_unknown_flag_word(self, store):
        (store.base_dir / "101.yaml").write_text("enabled: sometimes\n")

        with pytest.raises(DeclaredStoreError):
            store.get("101")


class TestRecordValidator:
    """Tests for RecordValidator."""

    def test_valid(self):
        result = RecordValidator().validate(ExtensionRecord("101", secret="pw"))

        assert result.valid
        assert result.errors == []

    def test_secret_required_for_enabled(self):
        validator = RecordValidator()

        assert not validator.validate(ExtensionRecord("101")).valid
        assert validator.validate(ExtensionRecord("101", enabled=False)).valid

    def test_limits(self):
        result = RecordValidator(require_secret=False).validate(
            ExtensionRecord("101", max_contacts=0, qualify_frequency=-1)
        )

        assert not result.valid
        assert len(result.errors) == 2

    def test_codecs(self):
        validator = RecordValidator(require_secret=False)

        assert not validator.validate(ExtensionRecord("101", codecs=[])).valid
        assert not validator.validate(ExtensionRecord("101", codecs=["u law"])).valid

        result = validator.validate(ExtensionRecord("101", codecs=["ulaw", "ULAW", "amr"]))
        assert result.valid
        assert len(result.warnings) == 2

    def test_line_breaks_rejected(self):
        result = RecordValidator().validate(
            ExtensionRecord("101", secret="pw", display_name="Alice\n[evil]")
        )

        assert not result.valid
