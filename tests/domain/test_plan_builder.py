"""Tests for the deployment plan builder."""

import pytest

from sqldeploy.core.errors import PlanOrderingViolation
from sqldeploy.domain.models.operation import SourceKind
from sqldeploy.domain.services.descriptor_loader import DescriptorFeedLoader
from sqldeploy.domain.services.plan_builder import DeploymentPlanBuilder, script_operation
from sqldeploy.domain.services.script_loader import LoadedScript


def _feed(version="1"):
    return DescriptorFeedLoader().parse({
        "source_descriptor_version": version,
        "tables": [{
            "name": "Orders",
            "columns": [
                {"name": "Id", "type": "INTEGER", "primary_key": True},
                {"name": "CustomerId", "type": "INTEGER"},
            ],
            "indexes": [{"name": "IX_Orders_Customer", "columns": ["CustomerId"]}],
        }],
    })


def _loaded(phase, ordinal, path, text):
    return LoadedScript(phase=phase, ordinal=ordinal, raw_text=text, path=path)


class TestOrdering:
    """Plans are ordered by phase, entities before scripts."""

    def test_phase_order_and_entity_first(self):
        scripts = [
            _loaded(15, 1, "15-stored-procedures/usp.sql", "CREATE PROCEDURE usp AS SELECT 1"),
            _loaded(1, 7, "01-tables/audit.sql", "CREATE TABLE audit (id INTEGER);"),
            _loaded(4, 1, "04-reference-data/seed.sql", "INSERT INTO Orders VALUES (1, 1);"),
        ]

        plan = DeploymentPlanBuilder("sqlite").build(_feed(), scripts)

        assert [(op.phase, op.ordinal_within_phase, op.object_name) for op in plan] == [
            (1, 1, "Orders"),
            (1, 2, "audit"),
            (4, 1, "seed"),
            (6, 1, "IX_Orders_Customer"),
            (15, 1, "usp"),
        ]
        assert plan.operations[0].source_kind == SourceKind.ENTITY_DERIVED
        assert plan.operations[1].source_kind == SourceKind.REPOSITORY_SCRIPT
        assert [op.sort_key for op in plan] == sorted(op.sort_key for op in plan)
        assert plan.source_descriptor_version == "1"

    def test_operations_in_phase(self):
        scripts = [
            _loaded(4, 1, "04-reference-data/a.sql", "INSERT INTO Orders VALUES (1, 1);"),
            _loaded(4, 2, "04-reference-data/b.sql", "INSERT INTO Orders VALUES (2, 1);"),
        ]
        plan = DeploymentPlanBuilder("sqlite").build(_feed(), scripts)

        assert [op.object_name for op in plan.operations_in_phase(4)] == ["a", "b"]
        assert plan.phases_used == [1, 4, 6]

    def test_later_phase_reference_fails(self):
        scripts = [
            _loaded(14, 1, "14-views/v_late.sql", "CREATE VIEW v_late AS SELECT * FROM late_table"),
            _loaded(15, 1, "15-stored-procedures/oops.sql", "CREATE TABLE late_table (id INTEGER)"),
        ]

        with pytest.raises(PlanOrderingViolation) as exc_info:
            DeploymentPlanBuilder("sqlite").build(None, scripts)

        assert exc_info.value.object_name == "late_table"
        assert exc_info.value.context.phase == 14
        assert "phase 15" in str(exc_info.value)

    def test_same_version_feed_adds_no_entity_operations(self):
        scripts = [_loaded(1, 1, "01-tables/audit.sql", "CREATE TABLE audit (id INTEGER);")]

        plan = DeploymentPlanBuilder("sqlite").build(_feed("3"), scripts, last_deployed_version="3")

        assert [op.source_kind for op in plan] == [SourceKind.REPOSITORY_SCRIPT]
        assert plan.source_descriptor_version == "3"

    def test_no_feed_no_scripts(self):
        plan = DeploymentPlanBuilder("mssql").build(None, [])
        assert plan.is_empty
        assert plan.requires_approval is False

    def test_approval_phases_reported(self):
        scripts = [_loaded(16, 1, "16-triggers/trg.sql", "CREATE TRIGGER trg AFTER INSERT ON t BEGIN SELECT 1; END;")]
        plan = DeploymentPlanBuilder("sqlite").build(None, scripts)

        assert plan.requires_approval
        assert plan.approval_phases == [16]


class TestScriptOperation:
    """Tests for wrapping loaded scripts."""

    def test_named_after_first_create(self):
        op = script_operation(_loaded(1, 1, "01-tables/things.sql", "CREATE TABLE [dbo].[Things] (Id INT)"))

        assert op.object_name == "[dbo].[Things]"
        assert op.object_type == "TABLE"
        assert op.creates == ("things",)
        assert op.rollback_hint == "-- Rollback: DROP TABLE [dbo].[Things]"
        assert op.additive is True

    def test_data_script_uses_file_stem(self):
        op = script_operation(_loaded(4, 1, "04-reference-data/002_seed.sql", "INSERT INTO Things VALUES (1)"))

        assert op.object_name == "002_seed"
        assert op.object_type is None
        assert op.references == ("things",)

    @pytest.mark.parametrize("text", [
        "UPDATE Things SET Id = 2",
        "DELETE FROM Things",
        "ALTER TABLE Things ADD Code INT",
        "DROP VIEW v",
    ])
    def test_non_additive_scripts(self, text):
        assert script_operation(_loaded(4, 1, "04-reference-data/x.sql", text)).additive is False
