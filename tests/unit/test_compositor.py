"""Unit tests for multi-service workflow composition"""

from __future__ import annotations

import pytest

from floworx.workflows.compositor import (
    HYBRID,
    MODULAR,
    UNIFIED,
    build_composite_template,
    calculate_compatibility,
    compatibility_key,
    determine_composition_strategy,
)


@pytest.mark.parametrize(
    "business_types,score,strategy",
    [
        (["Pools", "Hot tub & Spa"], 100, UNIFIED),
        (["Pools", "HVAC"], 0, MODULAR),
        (["Electrician", "HVAC", "Plumber", "Flooring"], 50, HYBRID),
    ],
)
def test_compatibility_and_strategy(business_types, score, strategy):
    assert calculate_compatibility(business_types) == score
    assert determine_composition_strategy(business_types) == strategy


def test_compatibility_is_mean_of_pairs():
    assert calculate_compatibility(["Electrician", "HVAC", "Flooring"]) == pytest.approx(100 / 3)
    assert calculate_compatibility(["HVAC"]) == 0


def test_compatibility_pairs_are_ordered():
    # Roofing lists Insulation; Insulation has no entry of its own
    assert calculate_compatibility(["Roofing", "Insulation & Foam Spray"]) == 100
    assert calculate_compatibility(["Insulation & Foam Spray", "Roofing"]) == 0


@pytest.mark.parametrize(
    "business_types,score,strategy",
    [
        (["electrician", "hvac"], 100, UNIFIED),
        (["Pools & Spas", "Hot tub & Spa"], 100, UNIFIED),
        (["roofing_contractor", "general_contractor"], 100, UNIFIED),
        (["Plumbing", "Electrician"], 100, UNIFIED),
        (["pools_spas", "hvac"], 0, MODULAR),
    ],
)
def test_compatibility_accepts_ids_and_aliases(business_types, score, strategy):
    assert calculate_compatibility(business_types) == score
    assert determine_composition_strategy(business_types) == strategy


@pytest.mark.parametrize(
    "business_type,key",
    [
        ("pools_spas", "Pools"),
        ("Pools & Spas", "Pools"),
        ("Sauna & Icebath", "Sauna & Icebath"),
        ("Painting Contractor", "Painting"),
        ("hvac", "HVAC"),
        ("Welding", "Welding"),
    ],
)
def test_compatibility_key(business_type, key):
    assert compatibility_key(business_type) == key


def test_single_business_type_uses_provider_template():
    result = build_composite_template(["HVAC"], {"userId": "user-1"}, provider="outlook")

    assert result["type"] == "single"
    assert result["businessType"] == "HVAC"
    assert result["template"]["name"].endswith("Outlook AI Email Automation")
    assert result["metadata"]["isComposite"] is False
    assert result["metadata"]["userId"] == "user-1"


def test_composite_workflow_structure():
    workflow = build_composite_template(["Pools", "HVAC"], {"userId": "user-1"})

    assert workflow["name"] == "Pools + HVAC Multi-Service Automation Workflow"
    names = [node["name"] for node in workflow["nodes"]]
    assert names == [
        "Gmail Trigger: New Email",
        "Fetch Business Config",
        "AI Multi-Service Classifier",
        "Route by Business Type",
        "Pools Service Responder",
        "HVAC Service Responder",
        "Apply Multi-Service Labels",
        "Log Multi-Service Analytics",
    ]
    assert len({node["id"] for node in workflow["nodes"]}) == len(names)

    router_targets = [
        branch[0]["node"] for branch in workflow["connections"]["Route by Business Type"]["main"]
    ]
    assert router_targets == ["Pools Service Responder", "HVAC Service Responder"]
    assert workflow["connections"]["HVAC Service Responder"]["main"][0][0]["node"] == (
        "Apply Multi-Service Labels"
    )

    metadata = workflow["metadata"]
    assert metadata["compositionStrategy"] == MODULAR
    assert metadata["primaryType"] == "Pools"
    assert metadata["secondaryTypes"] == ["HVAC"]
    assert metadata["isComposite"] is True
    assert metadata["userId"] == "user-1"


def test_router_rules_follow_business_type_order():
    workflow = build_composite_template(["Electrician", "HVAC", "Plumber"])

    router = next(node for node in workflow["nodes"] if node["name"] == "Route by Business Type")
    assert router["parameters"]["rules"]["rules"] == [
        {"value": "Electrician", "output": 0},
        {"value": "HVAC", "output": 1},
        {"value": "Plumber", "output": 2},
    ]
    assert workflow["metadata"]["compositionStrategy"] == UNIFIED


def test_empty_business_types_rejected():
    with pytest.raises(ValueError):
        build_composite_template([])
