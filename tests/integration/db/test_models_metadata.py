from __future__ import annotations

from cobuy.models import Base
import cobuy.models  # noqa: F401


def test_model_metadata_contains_negotiation_tables():
    expected = {
        "cost_calculations",
        "negotiation_sessions",
        "session_participants",
        "group_members",
        "member_intentions",
    }
    assert expected.issubset(set(Base.metadata.tables.keys()))


def test_one_active_session_per_calculation_is_enforced_by_index():
    table = Base.metadata.tables["negotiation_sessions"]
    index = next(ix for ix in table.indexes if ix.name == "uq_negotiation_sessions_active_calculation")
    assert index.unique is True
    assert [column.name for column in index.columns] == ["calculation_id"]
