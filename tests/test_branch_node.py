import pytest
from pydantic import ValidationError

from kindred.domain.models import BranchNode, BranchVersion, ChatMessage


def test_new_node_selects_its_only_version():
    node = BranchNode.new(ChatMessage.assistant("hello"))

    assert len(node) == 1
    assert node.selected == 0
    assert node.selected_message.content == "hello"
    assert not node.can_go_back
    assert not node.can_go_forward


def test_push_appends_and_selects_new_version():
    node = BranchNode.new(ChatMessage.assistant("first"))

    node.push(ChatMessage.assistant("second"))
    node.push(ChatMessage.assistant("third"))

    assert len(node) == 3
    assert node.selected == 2
    assert node.selected_message.content == "third"
    assert node.can_go_back
    assert not node.can_go_forward


def test_navigation_moves_selection_without_changing_versions():
    node = BranchNode.new(ChatMessage.assistant("a"))
    node.push(ChatMessage.assistant("b"))
    node.push(ChatMessage.assistant("c"))

    assert node.select_previous().content == "b"
    assert node.select_previous().content == "a"
    assert node.select_next().content == "b"
    assert len(node) == 3
    assert [version.message.content for version in node.versions] == ["a", "b", "c"]


def test_selected_index_stays_valid_across_pushes_and_moves():
    node = BranchNode.new(ChatMessage.assistant("0"))
    for i in range(1, 6):
        node.push(ChatMessage.assistant(str(i)))
        while node.can_go_back:
            node.select_previous()
            assert 0 <= node.selected < len(node)
        assert node.selected == 0
        node.push(ChatMessage.assistant(f"{i}b"))
        assert node.selected == len(node) - 1


def test_moving_past_first_version_is_an_error():
    node = BranchNode.new(ChatMessage.assistant("only"))

    with pytest.raises(IndexError):
        node.select_previous()
    assert node.selected == 0


def test_moving_past_last_version_is_an_error():
    node = BranchNode.new(ChatMessage.assistant("a"))
    node.push(ChatMessage.assistant("b"))

    with pytest.raises(IndexError):
        node.select_next()
    assert node.selected == 1


def test_mark_boundary_flags_selected_version_only():
    node = BranchNode.new(ChatMessage.user("a"))
    node.push(ChatMessage.user("b"))
    node.select_previous()
    inserted_at = node.versions[0].inserted_at

    node.mark_boundary()

    assert node.versions[0].message.freewill
    assert node.versions[0].message.content == "a"
    assert node.versions[0].inserted_at == inserted_at
    assert not node.versions[1].message.freewill


def test_messages_are_immutable():
    message = ChatMessage.user("hi")

    with pytest.raises(ValidationError):
        message.content = "changed"


def test_out_of_range_selection_is_rejected():
    with pytest.raises(ValidationError):
        BranchNode(versions=[BranchVersion(message=ChatMessage.user("a"))], selected=1)

    with pytest.raises(ValidationError):
        BranchNode(versions=[])
