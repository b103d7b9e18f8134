import pytest

from tlon_mcp.contacts import build_directory
from tlon_mcp.errors import UnresolvedRecipientError
from tlon_mcp.resolver import needs_directory, resolve_address

OWN = "~zod"


@pytest.fixture
def directory():
    return build_directory(
        {
            "zod": {"nickname": "Captain"},
            "~sampel-palnet": {"nickname": "Bob"},
            "nec": None,
        }
    )


@pytest.mark.parametrize("name", ["me", "Me", "SELF", "i", "myself", "  me  "])
def test_self_references_resolve_to_own_identity(name, directory):
    assert resolve_address(name, OWN, directory) == OWN


def test_self_reference_does_not_need_directory():
    assert resolve_address("me", OWN, None) == OWN


def test_sigil_input_is_returned_verbatim():
    assert resolve_address("~not-in-contacts", OWN, None) == "~not-in-contacts"
    assert resolve_address("~Nec", OWN, None) == "~Nec"


@pytest.mark.parametrize("name", ["bob", "BOB", "Bob"])
def test_nickname_lookup_is_case_insensitive(name, directory):
    assert resolve_address(name, OWN, directory) == "~sampel-palnet"


def test_nickname_of_own_ship_resolves_to_self(directory):
    assert resolve_address("captain", OWN, directory) == OWN


def test_unknown_nickname_raises_with_input(directory):
    with pytest.raises(UnresolvedRecipientError) as excinfo:
        resolve_address("alice", OWN, directory)
    assert "alice" in str(excinfo.value)
    assert excinfo.value.name == "alice"


def test_no_partial_matching(directory):
    with pytest.raises(UnresolvedRecipientError):
        resolve_address("bo", OWN, directory)


def test_contact_with_null_record_is_not_resolvable(directory):
    with pytest.raises(UnresolvedRecipientError):
        resolve_address("nec", OWN, directory)


def test_empty_name_is_rejected(directory):
    with pytest.raises(UnresolvedRecipientError) as excinfo:
        resolve_address("   ", OWN, directory)
    assert str(excinfo.value) == "Name or ship ID is required"


def test_nickname_without_directory_is_unresolved():
    with pytest.raises(UnresolvedRecipientError):
        resolve_address("bob", OWN, None)


def test_needs_directory():
    assert needs_directory("bob")
    assert not needs_directory("~bob")
    assert not needs_directory("ME")
    assert not needs_directory("")


def test_nickname_with_surrounding_whitespace_resolves():
    directory = build_directory({"~nec": {"nickname": "Bob "}})
    assert directory.by_nickname == {"bob": "~nec"}
    assert resolve_address("Bob ", OWN, directory) == "~nec"
    assert resolve_address("bob", OWN, directory) == "~nec"
