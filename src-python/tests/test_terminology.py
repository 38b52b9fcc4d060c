"""Tests for cleanup.terminology — shield ↔ DTO ↔ legacy mask conversions."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from models.schemas import (
    ApplyMode,
    CleanupShield,
    NormalizedBBox,
    PageTarget,
    RiskLevel,
    ShieldProvenance,
    ShieldSource,
    ShieldType,
    ZoneTarget,
)
from cleanup.exceptions import InvalidShieldError, TerminologyError
from cleanup.terminology import (
    CleanupShieldDto,
    MaskDto,
    dto_to_mask,
    dto_to_shield,
    mask_to_dto,
    mask_to_shield,
    shield_to_dto,
    shield_to_mask,
)


def _shield(**kwargs) -> CleanupShield:
    defaults = dict(
        id="s-1",
        shield_type=ShieldType.WATERMARK,
        normalized_bbox=NormalizedBBox(x=0.2, y=0.3, width=0.4, height=0.2),
        confidence=0.75,
        apply_mode=ApplyMode.SUGGESTED,
        risk_level=RiskLevel.MEDIUM,
        page_target=PageTarget.specific([1, 3]),
        zone_target=ZoneTarget(include_zones=("Header",), exclude_zones=("Totals",)),
        why_detected="diagonal text",
        provenance=ShieldProvenance(source=ShieldSource.TEMPLATE_RULE),
    )
    defaults.update(kwargs)
    return CleanupShield(**defaults)


class TestShieldDto:
    def test_string_enums(self):
        dto = shield_to_dto(_shield())
        assert dto.shield_type == "Watermark"
        assert dto.apply_mode == "Suggested"
        assert dto.risk_level == "Medium"
        assert dto.source == "TemplateRule"

    def test_page_target_tagged(self):
        assert shield_to_dto(_shield()).page_target.model_dump() == {"type": "Specific", "pages": [1, 3]}
        dto = shield_to_dto(_shield(page_target=PageTarget.last()))
        assert dto.page_target.model_dump() == {"type": "Last", "pages": None}

    def test_round_trip(self):
        shield = _shield()
        assert dto_to_shield(shield_to_dto(shield)) == shield

    def test_unknown_shield_type(self):
        data = shield_to_dto(_shield()).model_dump()
        data["shield_type"] = "Graffiti"
        with pytest.raises(TerminologyError, match="Graffiti"):
            dto_to_shield(CleanupShieldDto.model_validate(data))

    def test_unknown_source(self):
        data = shield_to_dto(_shield()).model_dump()
        data["source"] = "Admin"
        with pytest.raises(TerminologyError):
            dto_to_shield(CleanupShieldDto.model_validate(data))

    def test_unknown_page_target(self):
        data = shield_to_dto(_shield()).model_dump()
        data["page_target"] = {"type": "Odd"}
        with pytest.raises(TerminologyError):
            dto_to_shield(CleanupShieldDto.model_validate(data))

    def test_out_of_page_box(self):
        data = shield_to_dto(_shield()).model_dump()
        data["normalized_bbox"]["width"] = 0.9
        with pytest.raises(InvalidShieldError):
            dto_to_shield(CleanupShieldDto.model_validate(data))

    def test_defaults_for_missing_targets(self):
        data = shield_to_dto(_shield()).model_dump()
        del data["page_target"], data["zone_target"]
        shield = dto_to_shield(CleanupShieldDto.model_validate(data))
        assert shield.page_target == PageTarget.all()
        assert shield.zone_target == ZoneTarget()


class TestMaskDto:
    def test_rename(self):
        mask = shield_to_mask(_shield())
        assert isinstance(mask, MaskDto)
        assert mask.mask_type == "Watermark"
        assert "shield_type" not in mask.model_dump()

    def test_mask_round_trip(self):
        shield = _shield()
        assert mask_to_shield(shield_to_mask(shield)) == shield

    def test_reviewer_shield_round_trip(self):
        shield = _shield(
            shield_type=ShieldType.STAMP,
            min_confidence=0.3,
            why_detected="PAID stamp",
            provenance=ShieldProvenance(
                source=ShieldSource.SESSION_OVERRIDE,
                why_detected="drawn by reviewer",
                user_id="u-7",
                updated_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
            ),
        )
        back = mask_to_shield(shield_to_mask(shield))
        assert back == shield
        assert back.min_confidence == 0.3
        assert back.provenance.why_detected == "drawn by reviewer"
        assert back.provenance.user_id == "u-7"

    def test_json_wire_round_trip(self):
        shield = _shield(provenance=ShieldProvenance(
            source=ShieldSource.VENDOR_RULE, vendor_id="acme",
        ))
        wire = shield_to_mask(shield).model_dump(mode="json")
        assert mask_to_shield(MaskDto.model_validate(wire)) == shield

    @settings(deadline=None)
    @given(
        st.sampled_from(list(ShieldSource)),
        st.floats(min_value=0.0, max_value=1.0),
        st.one_of(st.none(), st.text(min_size=1, max_size=10)),
        st.one_of(st.none(), st.text(min_size=1, max_size=10)),
        st.one_of(st.none(), st.text(min_size=1, max_size=10)),
        st.text(max_size=20),
    )
    def test_mask_round_trip_keeps_provenance(
        self, source, min_confidence, user_id, vendor_id, template_id, why,
    ):
        shield = _shield(
            min_confidence=min_confidence,
            provenance=ShieldProvenance(
                source=source, why_detected=why,
                user_id=user_id, vendor_id=vendor_id, template_id=template_id,
            ),
        )
        assert mask_to_shield(shield_to_mask(shield)) == shield

    @given(
        st.sampled_from(list(ShieldType)),
        st.sampled_from(list(ApplyMode)),
        st.sampled_from(list(RiskLevel)),
        st.sampled_from(list(ShieldSource)),
        st.floats(min_value=0.0, max_value=1.0),
        st.text(max_size=20),
    )
    def test_dto_mask_lossless(self, shield_type, apply_mode, risk, source, confidence, why):
        shield = _shield(
            shield_type=shield_type, apply_mode=apply_mode, risk_level=risk,
            provenance=ShieldProvenance(source=source), confidence=confidence, why_detected=why,
        )
        dto = shield_to_dto(shield)
        assert mask_to_dto(dto_to_mask(dto)) == dto

    def test_payload_without_provenance_gets_defaults(self):
        data = shield_to_mask(_shield()).model_dump()
        del data["provenance"], data["min_confidence"]
        shield = mask_to_shield(MaskDto.model_validate(data))
        assert shield.source == ShieldSource.TEMPLATE_RULE
        assert shield.min_confidence == 0.6
        assert shield.provenance.why_detected == "diagonal text"
        assert shield.provenance.user_id is None
