"""
Tests de la clave canónica de threads
"""
import pytest

from agrimarket.messaging.errors import InvalidParticipants
from agrimarket.messaging.resolver import canonical_pair, thread_key

def test_key_is_order_independent():
    assert thread_key("u1", "u2") == thread_key("u2", "u1")
    assert thread_key("u1", "u2", "p7") == thread_key("u2", "u1", "p7")

def test_key_format():
    assert thread_key("b", "a") == "chat:a:b"
    assert thread_key("b", "a", "p7") == "chat:a:b:p7"

def test_product_is_part_of_the_key():
    general = thread_key("u1", "u2")
    p7 = thread_key("u1", "u2", "p7")
    p8 = thread_key("u1", "u2", "p8")
    assert len({general, p7, p8}) == 3

def test_canonical_pair_sorts():
    assert canonical_pair("z9", "a1") == ("a1", "z9")

@pytest.mark.parametrize("a,b", [("u1", "u1"), ("", "u2"), ("   ", "u2"), ("u1", None)])
def test_invalid_participants(a, b):
    with pytest.raises(InvalidParticipants):
        thread_key(a, b)

def test_separator_not_allowed():
    with pytest.raises(InvalidParticipants):
        thread_key("u:1", "u2")
    with pytest.raises(InvalidParticipants):
        thread_key("u1", "u2", "p:7")
