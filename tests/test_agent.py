"""Tests for agent profile normalisation."""

from cortex.agent import AgentProfile, Mode, normalize_agent


def test_defaults_for_non_dict():
    agent = normalize_agent("not an agent")
    assert agent.name == "Unnamed Agent"
    assert agent.persona == "A helpful AI assistant."
    assert agent.capabilities == [Mode.CHAT]
    assert agent.knowledge_base == []


def test_mistyped_fields_replaced():
    agent = normalize_agent({
        "name": 42,
        "persona": "Stoic.",
        "capabilities": "logic",
        "knowledgeBase": ["fact", 7, None],
        "metadata": "nope",
    })
    assert agent.name == "Unnamed Agent"
    assert agent.persona == "Stoic."
    assert agent.capabilities == [Mode.CHAT]
    assert agent.knowledge_base == ["fact"]
    assert agent.metadata == {}


def test_unknown_capabilities_dropped():
    agent = normalize_agent({"name": "Nova", "capabilities": ["Logic", "telepathy", "code"]})
    assert agent.capabilities == [Mode.LOGIC, Mode.CODE]
    assert agent.default_mode is Mode.LOGIC


def test_snake_case_knowledge_key():
    assert normalize_agent({"knowledge_base": ["a"]}).knowledge_base == ["a"]


def test_with_knowledge_copies():
    agent = AgentProfile(name="Nova", persona="p", knowledge_base=["a"])
    updated = agent.with_knowledge(["b"])
    assert agent.knowledge_base == ["a"]
    assert updated.knowledge_base == ["b"]
    assert updated.to_dict()["knowledgeBase"] == ["b"]
