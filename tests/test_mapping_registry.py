from __future__ import annotations

import logging

import pytest

from surveydoc.mapping.registry import MappingRegistry
from surveydoc.templates.models import Placeholder, PlaceholderKind
from surveydoc.utils.errors import FormatError, NotFoundError


def _simple(name: str) -> Placeholder:
    return Placeholder(
        name=name,
        kind=PlaceholderKind.SIMPLE,
        full_match=f"{{{{{name}}}}}",
        required=True,
    )


def _block(name: str, kind: PlaceholderKind = PlaceholderKind.CONDITIONAL) -> Placeholder:
    return Placeholder(
        name=name,
        kind=kind,
        full_match=f"{{{{#{name}}}}}x{{{{/{name}}}}}",
        required=False,
    )


def _registry() -> MappingRegistry:
    return MappingRegistry(
        ["employee_name", "company", "has_benefits", "notes"],
        [_simple("employee_name"), _simple("company_name"), _block("has_benefits")],
    )


def test_create_mapping_derives_kind_and_requiredness() -> None:
    registry = _registry()

    simple_id = registry.create_mapping("employee_name", "employee_name")
    block_id = registry.create_mapping("has_benefits", "has_benefits", notes="benefits flag")

    simple = registry.get_mapping(simple_id)
    block = registry.get_mapping(block_id)
    assert simple is not None and block is not None
    assert simple.placeholder_kind is PlaceholderKind.SIMPLE
    assert simple.required is True
    assert block.placeholder_kind is PlaceholderKind.CONDITIONAL
    assert block.required is False
    assert block.notes == "benefits flag"
    assert simple_id != block_id
    assert simple_id.startswith("employee_name_to_employee_name_")


def test_create_mapping_rejects_unknown_names() -> None:
    registry = _registry()

    with pytest.raises(NotFoundError) as exc_info:
        registry.create_mapping("employee_name", "missing_placeholder")
    assert exc_info.value.kind == "placeholder"

    with pytest.raises(NotFoundError) as exc_info:
        registry.create_mapping("ghost_field", "employee_name")
    assert exc_info.value.kind == "field"
    assert exc_info.value.name == "ghost_field"


def test_registries_do_not_share_state() -> None:
    first = _registry()
    second = _registry()

    first.create_mapping("employee_name", "employee_name")

    assert len(first.get_mappings()) == 1
    assert second.get_mappings() == []


def test_remove_update_and_clear_mappings() -> None:
    registry = _registry()
    mapping_id = registry.create_mapping("company", "company_name")

    assert registry.update_mapping_notes(mapping_id, "legal name") is True
    assert registry.get_mapping(mapping_id).notes == "legal name"
    assert registry.update_mapping_notes("unknown", "x") is False

    assert registry.remove_mapping(mapping_id) is True
    assert registry.remove_mapping(mapping_id) is False

    registry.create_mapping("company", "company_name")
    registry.clear_mappings()
    assert registry.get_mappings() == []


def test_lookup_by_field_and_placeholder() -> None:
    registry = _registry()
    registry.create_mapping("company", "company_name")
    registry.create_mapping("notes", "company_name")

    assert [item.data_field for item in registry.get_mappings_for_placeholder("company_name")] == [
        "company",
        "notes",
    ]
    assert len(registry.get_mappings_for_field("company")) == 1
    assert registry.get_mappings_for_field("employee_name") == []


def test_initialize_clears_existing_mappings() -> None:
    registry = _registry()
    registry.create_mapping("company", "company_name")

    registry.initialize(["company"], [_simple("company_name")])

    assert registry.get_mappings() == []
    assert registry.fields == ["company"]
    assert [item.name for item in registry.placeholders] == ["company_name"]


def test_generate_suggestions_skips_blocks_and_mapped_placeholders() -> None:
    registry = _registry()

    suggestions = registry.generate_suggestions()

    assert [(item.placeholder_name, item.data_field) for item in suggestions] == [
        ("employee_name", "employee_name"),
        ("company_name", "company"),
    ]
    assert suggestions[0].confidence == 1.0
    assert suggestions[1].reason == "partial"

    registry.create_mapping("employee_name", "employee_name")
    assert [item.placeholder_name for item in registry.generate_suggestions()] == ["company_name"]


def test_apply_suggestions_is_idempotent() -> None:
    registry = _registry()

    assert registry.apply_suggestions() == 2
    assert registry.apply_suggestions() == 0
    assert len(registry.get_mappings()) == 2


def test_apply_suggestions_respects_min_confidence() -> None:
    registry = _registry()

    assert registry.apply_suggestions(min_confidence=0.95) == 1
    assert registry.get_mappings()[0].placeholder_name == "employee_name"


def test_apply_suggestions_skips_fields_already_mapped() -> None:
    registry = MappingRegistry(["name"], [_simple("name"), _simple("full_name")])

    assert registry.apply_suggestions(min_confidence=0.5) == 1
    assert [item.placeholder_name for item in registry.get_mappings()] == ["name"]


def test_validate_reports_collisions_fan_out_and_unmapped_required() -> None:
    registry = _registry()
    registry.create_mapping("company", "company_name")
    registry.create_mapping("notes", "company_name")
    registry.create_mapping("has_benefits", "has_benefits")
    registry.create_mapping("has_benefits", "employee_name")

    validation = registry.validate()

    assert validation.is_valid is False
    assert 'Placeholder "company_name" is mapped to multiple fields' in validation.errors
    assert 'Field "has_benefits" is mapped to multiple placeholders' in validation.warnings
    assert validation.mapped_count == 4
    assert validation.required_count == 2
    assert validation.completeness == 100


def test_validate_completeness_counts_required_placeholders() -> None:
    registry = _registry()
    registry.create_mapping("company", "company_name")

    validation = registry.validate()

    assert validation.is_valid is False
    assert validation.errors == ['Required placeholder "employee_name" is not mapped']
    assert validation.completeness == 50


def test_validate_without_required_placeholders_is_complete() -> None:
    registry = MappingRegistry(["flag"], [_block("flag")])

    validation = registry.validate()

    assert validation.is_valid is True
    assert validation.required_count == 0
    assert validation.completeness == 100


def test_statistics_counts_kinds_and_unmapped() -> None:
    registry = _registry()
    registry.create_mapping("employee_name", "employee_name")
    registry.create_mapping("has_benefits", "has_benefits")

    stats = registry.statistics()

    assert stats.total_mappings == 2
    assert stats.by_kind == {"simple": 1, "conditional": 1, "loop": 0}
    assert stats.unmapped_fields == 2
    assert stats.unmapped_placeholders == 1
    assert stats.completeness == 50


@pytest.mark.parametrize(("mapped", "expected"), [(1, 13), (5, 63)])
def test_validate_completeness_rounds_halves_up(mapped: int, expected: int) -> None:
    names = [f"field_{index}" for index in range(8)]
    registry = MappingRegistry(names, [_simple(name) for name in names])
    for name in names[:mapped]:
        registry.create_mapping(name, name)

    assert registry.validate().completeness == expected
    assert registry.statistics().completeness == expected


def test_export_snapshot_shape() -> None:
    registry = _registry()
    registry.create_mapping("company", "company_name", notes="legal")

    snapshot = registry.export_snapshot()

    assert snapshot["version"] == "1.0"
    assert snapshot["createdAt"].endswith("Z")
    assert snapshot["surveyFields"] == ["employee_name", "company", "has_benefits", "notes"]
    assert snapshot["placeholders"][0] == {
        "name": "employee_name",
        "type": "simple",
        "isRequired": True,
    }
    assert snapshot["mappings"] == [
        {
            "surveyField": "company",
            "placeholder": "company_name",
            "placeholderType": "simple",
            "isRequired": True,
            "notes": "legal",
        }
    ]


def test_import_snapshot_restores_exported_pairs() -> None:
    source = _registry()
    source.create_mapping("company", "company_name", notes="legal")
    source.create_mapping("has_benefits", "has_benefits")
    snapshot = source.export_snapshot()

    target = _registry()
    target.create_mapping("employee_name", "employee_name")
    imported = target.import_snapshot(snapshot)

    assert imported == 2
    pairs = {(item.data_field, item.placeholder_name, item.notes) for item in target.get_mappings()}
    assert pairs == {("company", "company_name", "legal"), ("has_benefits", "has_benefits", None)}


def test_import_snapshot_skips_unknown_and_malformed_entries(
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.WARNING, logger="surveydoc.mapping.registry")
    registry = _registry()

    imported = registry.import_snapshot(
        {
            "mappings": [
                {"surveyField": "ghost", "placeholder": "company_name"},
                {"placeholder": "company_name"},
                "not-an-object",
                {"surveyField": "company", "placeholder": "company_name"},
            ]
        }
    )

    assert imported == 1
    warnings = [record.message for record in caplog.records]
    assert any("ghost" in message for message in warnings)
    assert any("malformed" in message for message in warnings)


@pytest.mark.parametrize("payload", [{}, {"mappings": "nope"}, ["mappings"]])
def test_import_snapshot_rejects_invalid_payload(payload: object) -> None:
    registry = _registry()

    with pytest.raises(FormatError, match="Invalid mapping data format"):
        registry.import_snapshot(payload)  # type: ignore[arg-type]


def test_revalidate_lists_and_prunes_stale_mappings() -> None:
    registry = _registry()
    registry.create_mapping("company", "company_name")
    registry.create_mapping("employee_name", "employee_name")

    registry.update_fields(["employee_name"])
    stale = registry.revalidate()

    assert [item.data_field for item in stale] == ["company"]
    assert len(registry.get_mappings()) == 2

    registry.update_placeholders([_simple("company_name")])
    pruned = registry.revalidate(prune=True)

    assert {item.data_field for item in pruned} == {"company", "employee_name"}
    assert registry.get_mappings() == []
