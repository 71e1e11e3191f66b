"""
Tests for the Stage 1 merger (stage1/merge_stage1.py)

Run: python -m pytest tests/test_merge_stage1.py -q
"""

import copy
import json
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
from stage1.merge_stage1 import (
    MergeInput,
    load_merge_inputs,
    main,
    merge,
    select_base,
)


# ---------------------------------------------------------------------------
# Test helpers
# ---------------------------------------------------------------------------

def _make_main(film_id="F1", step="scenario_development"):
    return {
        "film_id": film_id,
        "current_step": step,
        "timestamp": "2025-01-01T00:00:00Z",
        "film_metadata": {"title_working": "Test"},
        "current_work": {
            "treatment": {"treatment_title": "TT"},
            "scenario": {"scenario_title": "T", "scenes": [{"scene_id": "s1"}]},
        },
    }


def _make_assets(film_id="F1", characters=(), locations=(), props=(), step="asset_addition"):
    def records(prefix_pairs):
        return [{"id": rid, "name": name} for rid, name in prefix_pairs]
    return {
        "film_id": film_id,
        "current_step": step,
        "timestamp": "2025-01-02T00:00:00Z",
        "film_metadata": {},
        "visual_blocks": {
            "characters": records(characters),
            "locations": records(locations),
            "props": records(props),
        },
    }


def _inp(name, doc):
    return MergeInput.from_document(name, doc)


# ---------------------------------------------------------------------------
# MergeInput
# ---------------------------------------------------------------------------

class TestMergeInput:
    def test_kind_and_identity(self):
        main_doc = _inp("a.json", _make_main())
        asset_doc = _inp("b.json", _make_assets())
        assert (main_doc.kind, main_doc.identity) == ("main", "F1")
        assert asset_doc.kind == "asset"

    def test_missing_film_id_becomes_unknown(self):
        doc = _make_assets()
        del doc["film_id"]
        assert _inp("x.json", doc).identity == "UNKNOWN"


# ---------------------------------------------------------------------------
# Failure modes
# ---------------------------------------------------------------------------

class TestMergeFailures:
    def test_empty_input(self):
        result = merge([])
        assert not result.success
        assert result.document is None
        assert len(result.errors) == 1

    def test_identity_mismatch_single_combined_error(self):
        inputs = [
            _inp("main.json", _make_main("F1")),
            _inp("chars.json", _make_assets("F2", characters=[("c1", "Al")])),
            _inp("props.json", _make_assets("F3", props=[("p1", "Key")])),
        ]
        result = merge(inputs)
        assert not result.success
        assert result.document is None
        assert result.warnings == []
        assert len(result.errors) == 1
        assert "chars.json" in result.errors[0]
        assert "props.json" in result.errors[0]
        assert "main.json" not in result.errors[0].split("mismatched:")[1]


# ---------------------------------------------------------------------------
# Base selection
# ---------------------------------------------------------------------------

class TestSelectBase:
    def test_scenario_document_chosen_even_if_not_first(self):
        inputs = [_inp("assets.json", _make_assets()), _inp("main.json", _make_main())]
        assert select_base(inputs).name == "main.json"

    def test_scenario_presence_is_enough(self):
        doc = _make_main(step="concept_art_generation")
        inputs = [_inp("assets.json", _make_assets()), _inp("late.json", doc)]
        assert select_base(inputs).name == "late.json"

    def test_falls_back_to_first(self):
        inputs = [
            _inp("a.json", _make_assets(characters=[("c1", "Al")])),
            _inp("b.json", _make_assets(props=[("p1", "Key")])),
        ]
        assert select_base(inputs).name == "a.json"


# ---------------------------------------------------------------------------
# Merging assets
# ---------------------------------------------------------------------------

class TestMergeAssets:
    def test_concrete_scenario(self):
        doc_a = {
            "film_id": "F1",
            "current_step": "scenario_development",
            "current_work": {"scenario": {"scenario_title": "T", "scenes": [{"scene_id": "s1"}]}},
        }
        doc_b = {
            "film_id": "F1",
            "current_step": "asset_addition",
            "visual_blocks": {"characters": [{"id": "c1", "name": "Al"}]},
        }
        result = merge([_inp("A", doc_a), _inp("B", doc_b)])
        assert result.success
        assert result.errors == []
        assert result.warnings == []
        merged = result.document
        assert merged["current_step"] == "concept_art_blocks_completed"
        assert merged["visual_blocks"]["characters"] == [{"id": "c1", "name": "Al"}]
        assert merged["current_work"]["scenario"] == doc_a["current_work"]["scenario"]

    def test_disjoint_ids_are_summed(self):
        base = _make_main()
        base["visual_blocks"] = {"characters": [{"id": "c0", "name": "Zed"}]}
        inputs = [
            _inp("main.json", base),
            _inp("chars.json", _make_assets(characters=[("c1", "Al"), ("c2", "Bo")],
                                            locations=[("l1", "Home")])),
        ]
        result = merge(inputs)
        assert result.warnings == []
        blocks = result.document["visual_blocks"]
        assert [c["id"] for c in blocks["characters"]] == ["c0", "c1", "c2"]
        assert [loc["id"] for loc in blocks["locations"]] == ["l1"]
        assert blocks["props"] == []

    def test_collision_keeps_earlier_record(self):
        inputs = [
            _inp("main.json", _make_main()),
            _inp("first.json", _make_assets(characters=[("c1", "Al")])),
            _inp("second.json", _make_assets(characters=[("c1", "Imposter"), ("c2", "Bo")])),
        ]
        result = merge(inputs)
        chars = result.document["visual_blocks"]["characters"]
        assert chars == [{"id": "c1", "name": "Al"}, {"id": "c2", "name": "Bo"}]
        assert len(result.warnings) == 1
        warning = result.warnings[0]
        assert "second.json" in warning
        assert "c1" in warning
        assert "Imposter" in warning

    def test_base_records_win(self):
        base = _make_main()
        base["visual_blocks"] = {"props": [{"id": "p1", "name": "Original"}]}
        inputs = [
            _inp("assets.json", _make_assets(props=[("p1", "Copy")])),
            _inp("main.json", base),
        ]
        result = merge(inputs)
        assert result.document["visual_blocks"]["props"] == [{"id": "p1", "name": "Original"}]
        assert "assets.json" in result.warnings[0]

    def test_collections_are_independent(self):
        inputs = [
            _inp("main.json", _make_main()),
            _inp("a.json", _make_assets(characters=[("x1", "Al")], props=[("x1", "Key")])),
        ]
        result = merge(inputs)
        assert result.warnings == []
        assert len(result.document["visual_blocks"]["characters"]) == 1
        assert len(result.document["visual_blocks"]["props"]) == 1

    def test_inputs_not_mutated(self):
        main_doc = _make_main()
        asset_doc = _make_assets(characters=[("c1", "Al")])
        snapshot = copy.deepcopy([main_doc, asset_doc])
        result = merge([_inp("m", main_doc), _inp("a", asset_doc)])
        assert [main_doc, asset_doc] == snapshot
        result.document["visual_blocks"]["characters"][0]["name"] = "Changed"
        assert asset_doc["visual_blocks"]["characters"][0]["name"] == "Al"

    def test_non_object_entry_skipped(self):
        assets = _make_assets(characters=[("c1", "Al")])
        assets["visual_blocks"]["characters"].append("just a name")
        result = merge([_inp("main.json", _make_main()), _inp("chars.json", assets)])
        assert result.success
        assert result.document["visual_blocks"]["characters"] == [{"id": "c1", "name": "Al"}]
        assert len(result.warnings) == 1
        assert "chars.json" in result.warnings[0]
        assert "just a name" in result.warnings[0]

    def test_list_and_object_ids_are_compared_by_value(self):
        first = _make_assets()
        first["visual_blocks"]["characters"] = [
            {"id": ["c", 1], "name": "Al"},
            {"id": {"n": 2, "k": "c"}, "name": "Bo"},
        ]
        second = _make_assets()
        second["visual_blocks"]["characters"] = [
            {"id": ["c", 1], "name": "Al again"},
            {"id": {"k": "c", "n": 2}, "name": "Bo again"},
            {"id": ["c", 3], "name": "Cy"},
        ]
        result = merge([_inp("main.json", _make_main()), _inp("a.json", first), _inp("b.json", second)])
        assert result.success
        names = [c["name"] for c in result.document["visual_blocks"]["characters"]]
        assert names == ["Al", "Bo", "Cy"]
        assert len(result.warnings) == 2
        assert all("b.json" in w for w in result.warnings)

    def test_duplicates_inside_base_are_dropped(self):
        base = _make_main()
        base["visual_blocks"] = {"props": [
            {"id": "p1", "name": "Key"},
            {"id": "p1", "name": "Spare key"},
        ]}
        result = merge([_inp("main.json", base), _inp("assets.json", _make_assets(props=[("p2", "Lamp")]))])
        assert result.success
        assert result.document["visual_blocks"]["props"] == [
            {"id": "p1", "name": "Key"},
            {"id": "p2", "name": "Lamp"},
        ]
        assert len(result.warnings) == 1
        assert "main.json" in result.warnings[0]
        assert "Spare key" in result.warnings[0]
        assert len(base["visual_blocks"]["props"]) == 2


# ---------------------------------------------------------------------------
# Stage upgrade
# ---------------------------------------------------------------------------

class TestStageUpgrade:
    def test_no_assets_keeps_stage(self):
        result = merge([_inp("m", _make_main()), _inp("a", _make_assets())])
        assert result.document["current_step"] == "scenario_development"
        assert result.document["visual_blocks"] == {
            "characters": [], "locations": [], "props": [],
        }

    def test_never_downgrades(self):
        doc = _make_main(step="concept_art_generation")
        result = merge([_inp("m", doc), _inp("a", _make_assets(props=[("p1", "Key")]))])
        assert result.document["current_step"] == "concept_art_generation"

    def test_single_document_with_assets_is_upgraded(self):
        result = merge([_inp("a", _make_assets(locations=[("l1", "Home")]))])
        assert result.success
        assert result.document["current_step"] == "concept_art_blocks_completed"


# ---------------------------------------------------------------------------
# File loading and CLI
# ---------------------------------------------------------------------------

class TestLoadAndCli:
    def _write(self, tmp_path, name, doc_or_text):
        path = tmp_path / name
        text = doc_or_text if isinstance(doc_or_text, str) else json.dumps(doc_or_text)
        path.write_text(text, encoding="utf-8")
        return str(path)

    def test_load_skips_broken_files(self, tmp_path):
        good = self._write(tmp_path, "main.json", _make_main())
        broken = self._write(tmp_path, "broken.json", "not json at all")
        inputs, errors = load_merge_inputs([good, broken, str(tmp_path / "missing.json")])
        assert [i.name for i in inputs] == ["main.json"]
        assert len(errors) == 2
        assert "broken.json" in errors[0]
        assert "missing.json" in errors[1]

    def test_load_repairs_trailing_commas(self, tmp_path):
        text = json.dumps(_make_assets(characters=[("c1", "Al")]))[:-1] + ",}"
        path = self._write(tmp_path, "assets.json", text)
        inputs, errors = load_merge_inputs([path])
        assert errors == []
        assert inputs[0].kind == "asset"

    def test_cli_writes_merged_document(self, tmp_path):
        main_doc = _make_main()
        main_doc["current_work"]["scenario"]["scenes"] = [{"scene_id": "s1"}]
        m = self._write(tmp_path, "main.json", main_doc)
        a = self._write(tmp_path, "chars.json", _make_assets(
            characters=[("c1", "Al")], locations=[("l1", "Home")], props=[("p1", "Key")]))
        out = tmp_path / "merged.json"
        report = tmp_path / "report.json"
        rc = main([m, a, "--output", str(out), "--report", str(report)])
        assert rc == 0
        merged = json.loads(out.read_text(encoding="utf-8"))
        assert merged["current_step"] == "concept_art_blocks_completed"
        data = json.loads(report.read_text(encoding="utf-8"))
        assert data["success"] is True
        assert data["output"] == str(out)

    def test_cli_default_output_name(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        m = self._write(tmp_path, "main.json", _make_main())
        a = self._write(tmp_path, "chars.json", _make_assets(
            characters=[("c1", "Al")], locations=[("l1", "Home")], props=[("p1", "Key")]))
        main([m, a])
        assert (tmp_path / "F1_stage1_v1.1.json").exists()

    def test_cli_identity_mismatch_fails(self, tmp_path, capsys):
        m = self._write(tmp_path, "main.json", _make_main("F1"))
        a = self._write(tmp_path, "chars.json", _make_assets("F2", characters=[("c1", "Al")]))
        assert main([m, a, "--output", str(tmp_path / "out.json")]) == 1
        assert not (tmp_path / "out.json").exists()
        assert "MERGE FAILED" in capsys.readouterr().out

    def test_cli_nothing_loadable(self, tmp_path):
        broken = self._write(tmp_path, "broken.json", "???")
        assert main([broken]) == 2
