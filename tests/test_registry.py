"""Team lifecycle, administrative overrides and bookkeeping in ``TeamRegistry``."""

import pytest

from roster_bot.config import GuildConfig
from roster_bot.core.errors import (
    AlreadyAffiliated,
    AlreadyInUse,
    InvalidPasswordFile,
    InvalidTeamId,
    NameConflict,
    NotAffiliated,
    NotFound,
    RegistryError,
)
from roster_bot.core.registry import TeamRegistry

GUILD = 1000


def assert_consistent(registry, guild_id=GUILD):
    """Every member holds credentials for their team, and nobody else does."""
    teams = {t.id: t for t in registry.storage.all_teams(guild_id)}
    for team in teams.values():
        assert team.members, f"team {team.id} stored without members"
    for student in registry.storage.all_students():
        creds = student.credentials.get(guild_id)
        if creds is None:
            assert all(student.id not in t.members for t in teams.values())
            continue
        assert student.id in teams[creds.team].members
        assert creds.password == teams[creds.team].password
        assert student.pending_requests(guild_id) == []


def test_get_or_create_student_refreshes_name(registry):
    assert registry.get_or_create_student(1, "Alice").name == "Alice"
    assert registry.get_or_create_student(1, "alice#1").name == "alice#1"
    assert registry.get_student(1).name == "alice#1"
    with pytest.raises(NotFound):
        registry.get_student(404)


def test_create_team_uses_staged_password(registry):
    registry.import_passwords(GUILD, {"g01": "p1", "g02": "p2"})
    team = registry.create_team(GUILD, 1)
    assert team.password == "p1"
    assert registry.get_student(1).credentials[GUILD].password == "p1"
    assert_consistent(registry)


def test_create_team_registers_name(registry):
    registry.create_team(GUILD, 1)
    assert registry.guild_info(GUILD).names == {"g01": "g01"}


def test_add_member_is_idempotent(registry):
    registry.update_config(GUILD, team_capacity=3)
    registry.create_team(GUILD, 1)
    registry.add_member(GUILD, "g01", 2)
    before = registry.get_student(2).model_dump()

    team = registry.add_member(GUILD, "g01", 2)

    assert team.members == {1, 2}
    assert registry.get_team(GUILD, "g01").members == {1, 2}
    assert registry.get_student(2).model_dump() == before


def test_add_member_copies_password_and_clears_invitations(registry):
    registry.create(GUILD, 1, [3])
    registry.create_team(GUILD, 2)
    registry.set_password(GUILD, "g02", "pw")
    registry.add_member(GUILD, "g02", 3)
    student = registry.get_student(3)
    assert student.credentials[GUILD].password == "pw"
    assert student.pending_requests(GUILD) == []


def test_set_password_reaches_every_member(registry):
    registry.create(GUILD, 1, [2])
    registry.join(GUILD, 2, "g01")

    registry.set_password(GUILD, "g01", "x")

    assert registry.get_team(GUILD, "g01").password == "x"
    for sid in (1, 2):
        assert registry.get_student(sid).credentials[GUILD].password == "x"
    assert_consistent(registry)


def test_remove_member_deletes_empty_team(registry):
    registry.create_team(GUILD, 1)
    team = registry.remove_member(GUILD, "g01", 1)
    assert team.members == set()
    assert registry.find_team(GUILD, "g01") is None
    info = registry.guild_info(GUILD)
    assert info.holes == ["g01"]
    assert info.names == {}
    # removing a non-member of a live team is a no-op
    registry.create_team(GUILD, 2)
    assert registry.remove_member(GUILD, "g01", 3).members == {2}


def test_holes_are_reused_most_recent_first(registry):
    for sid in (1, 2, 3):
        registry.create_team(GUILD, sid)
    registry.leave(GUILD, 1)
    registry.leave(GUILD, 3)
    assert registry.create_team(GUILD, 4).id == "g03"
    assert registry.create(GUILD, 1).team.id == "g01"
    assert registry.guild_info(GUILD).count == 3


def test_delete_team_releases_members(registry):
    registry.create(GUILD, 1, [2])
    registry.join(GUILD, 2, "g01")
    registry.change_name(GUILD, "g01", "Owls")

    registry.delete_team(GUILD, "g01")

    assert registry.find_team(GUILD, "g01") is None
    assert registry.get_student(1).team_id(GUILD) is None
    assert registry.get_student(2).team_id(GUILD) is None
    info = registry.guild_info(GUILD)
    assert info.holes == ["g01"]
    assert "Owls" not in info.names
    with pytest.raises(NotFound):
        registry.delete_team(GUILD, "g01")


def test_change_name_collision_is_ignored(registry):
    registry.create_team(GUILD, 1)
    registry.create_team(GUILD, 2)
    assert registry.change_name(GUILD, "g01", "Owls") is True
    assert registry.change_name(GUILD, "g02", "Owls") is False
    assert registry.get_team(GUILD, "g02").name == "g02"
    # renaming to the current name is fine
    assert registry.change_name(GUILD, "g01", "Owls") is True
    names = registry.guild_info(GUILD).names
    assert names == {"Owls": "g01", "g02": "g02"}


def test_rename_surfaces_conflicts(registry):
    registry.create_team(GUILD, 1)
    registry.create_team(GUILD, 2)
    registry.rename(GUILD, 1, "Owls")
    with pytest.raises(NameConflict):
        registry.rename(GUILD, 2, "Owls")
    # the old name of a renamed team is free again
    assert registry.rename(GUILD, 2, "g01").name == "g01"
    assert registry.get_team(GUILD, "g02").name == "g01"
    with pytest.raises(RegistryError):
        registry.rename(GUILD, 2, "   ")
    with pytest.raises(NotAffiliated):
        registry.rename(GUILD, 3, "Larks")


def test_released_name_can_be_taken(registry):
    registry.create_team(GUILD, 1)
    registry.create_team(GUILD, 2)
    registry.rename(GUILD, 1, "Owls")
    registry.leave(GUILD, 1)
    assert registry.rename(GUILD, 2, "Owls").name == "Owls"


def test_confirm_does_not_require_full_team(registry):
    registry.create_team(GUILD, 1)
    assert registry.confirm(GUILD, "g01").confirmed is True
    assert registry.get_team(GUILD, "g01").confirmed is True
    assert registry.unconfirm(GUILD, "g01").confirmed is False
    with pytest.raises(NotFound):
        registry.confirm(GUILD, "g09")


# ----------------------------------------------------------------------
# Administrative overrides


def test_admin_add_registers_specific_identifier(registry):
    team = registry.admin_add(GUILD, 3, "g05")
    assert team.id == "g05"
    info = registry.guild_info(GUILD)
    assert info.count == 5
    assert info.holes == ["g01", "g02", "g03", "g04"]
    # regular allocation picks up the most recently recorded hole
    assert registry.create_team(GUILD, 4).id == "g04"
    assert_consistent(registry)


def test_admin_add_to_existing_team_ignores_capacity_and_lock(registry):
    registry.create(GUILD, 1, [2])
    registry.join(GUILD, 2, "g01")
    registry.confirm(GUILD, "g01")
    team = registry.admin_add(GUILD, 3, "g01")
    assert team.members == {1, 2, 3}
    assert_consistent(registry)


def test_admin_add_affiliated_student(registry):
    registry.create_team(GUILD, 1)
    registry.create_team(GUILD, 2)
    with pytest.raises(AlreadyAffiliated):
        registry.admin_add(GUILD, 1, "g02")
    assert registry.admin_add(GUILD, 1, "g01").members == {1}


def test_specific_identifier_already_in_use(registry):
    registry.create_team(GUILD, 1)
    with pytest.raises(AlreadyInUse):
        registry.create_team(GUILD, 2, "g01")
    assert registry.get_student(2).team_id(GUILD) is None


def test_admin_move_between_teams(registry):
    registry.create(GUILD, 1, [2])
    registry.join(GUILD, 2, "g01")

    moved = registry.admin_move(GUILD, 2, "g03")
    assert moved.id == "g03"
    assert moved.members == {2}
    assert registry.get_team(GUILD, "g01").members == {1}
    assert registry.guild_info(GUILD).holes == ["g02"]

    registry.admin_move(GUILD, 1, "g03")
    assert registry.find_team(GUILD, "g01") is None
    assert registry.get_team(GUILD, "g03").members == {1, 2}
    assert sorted(registry.guild_info(GUILD).holes) == ["g01", "g02"]
    assert_consistent(registry)


def test_admin_move_unaffiliated_student_into_hole(registry):
    registry.create_team(GUILD, 1)
    registry.leave(GUILD, 1)
    team = registry.admin_move(GUILD, 2, "g01")
    assert team.members == {2}
    assert registry.guild_info(GUILD).holes == []


def test_admin_move_to_invalid_identifier_keeps_student(registry):
    registry.create_team(GUILD, 1)
    with pytest.raises(InvalidTeamId):
        registry.admin_move(GUILD, 1, "zz")
    assert registry.get_student(1).team_id(GUILD) == "g01"
    assert registry.get_team(GUILD, "g01").members == {1}


def test_admin_remove_ignores_confirmation(registry):
    registry.create_team(GUILD, 1)
    registry.confirm(GUILD, "g01")
    team = registry.admin_remove(GUILD, 1)
    assert team.id == "g01"
    assert registry.find_team(GUILD, "g01") is None
    with pytest.raises(NotAffiliated):
        registry.admin_remove(GUILD, 1)


def test_stale_credentials_are_dropped(registry):
    registry.create_team(GUILD, 1)
    registry.storage.delete_team(GUILD, "g01")
    with pytest.raises(NotAffiliated):
        registry.leave(GUILD, 1)
    assert registry.get_student(1).team_id(GUILD) is None


# ----------------------------------------------------------------------
# Passwords, dumps, configuration and preferences


def test_parse_password_file():
    text = "g01 alpha\n\n  g02   beta  \r\ng03 gamma extra\n"
    assert TeamRegistry.parse_password_file(text) == {
        "g01": "alpha",
        "g02": "beta",
        "g03": "gamma",
    }
    with pytest.raises(InvalidPasswordFile, match="Line 2"):
        TeamRegistry.parse_password_file("g01 a\ng02\n")


def test_import_passwords_updates_existing_teams(registry):
    registry.create(GUILD, 1, [2])
    registry.join(GUILD, 2, "g01")

    updated = registry.import_passwords(GUILD, {"g01": "one", "g07": "seven", "../x": "bad"})

    assert updated == ["g01"]
    assert registry.get_student(2).credentials[GUILD].password == "one"
    assert registry.guild_info(GUILD).passwords["g07"] == "seven"
    registry.admin_add(GUILD, 3, "g07")
    assert registry.get_team(GUILD, "g07").password == "seven"
    assert_consistent(registry)


def test_team_dump_orders_by_number(registry):
    registry.admin_add(GUILD, 1, "g10")
    registry.admin_add(GUILD, 2, "g02")
    registry.admin_add(GUILD, 3, "g02")
    entries = registry.team_dump(GUILD)
    assert entries == [("g02", [2, 3]), ("g10", [1])]
    assert TeamRegistry.dump_text(entries) == "g02 2\ng02 3\ng10 1\n"
    assert registry.team_dump(GUILD + 1) == []


def test_update_config(registry):
    registry.create_team(GUILD, 1)
    config = registry.update_config(GUILD, team_prefix="t")
    assert config.team_prefix == "t"
    assert config.team_capacity == 2
    assert registry.guild_info(GUILD).prefix == "t"
    assert registry.create_team(GUILD, 2).id == "t02"
    with pytest.raises(RegistryError):
        registry.update_config(GUILD, team_capacity=0)
    assert registry.config(GUILD).team_capacity == 2


def test_config_provider_is_injectable(storage):
    registry = TeamRegistry(storage, lambda gid: GuildConfig(team_capacity=1, team_prefix="x"))
    registry.get_or_create_student(1, "Alice")
    registry.get_or_create_student(2, "Bob")
    outcome = registry.create(GUILD, 1)
    assert outcome.team.id == "x01"
    with pytest.raises(RegistryError):
        registry.create(GUILD, 2, [1])


def test_student_preferences_and_history(registry):
    registry.set_preferred_queue(GUILD, 1, "fast")
    registry.set_last_command(GUILD, 1, "/request fast")
    for rid in (11, 12, 13):
        registry.record_request(GUILD, 1, rid)
    student = registry.get_student(1)
    assert student.preferred_queue[GUILD] == "fast"
    assert student.last_command[GUILD] == "/request fast"
    assert registry.history(GUILD, 1) == [11, 12, 13]
    assert registry.history(GUILD, 1, limit=2) == [12, 13]
    with pytest.raises(NotFound):
        registry.set_preferred_queue(GUILD, 404, "fast")


@pytest.mark.parametrize("prefix", ["g/", "g\\", ".g", "g 1", ""])
def test_prefix_must_be_file_name_safe(registry, prefix):
    with pytest.raises(RegistryError):
        registry.update_config(GUILD, team_prefix=prefix)
    assert registry.config(GUILD).team_prefix == "g"
    assert registry.create(GUILD, 1).team.id == "g01"


def test_refused_team_record_leaves_student_unaffiliated(registry, monkeypatch):
    def refuse(team):
        raise NotFound(f"Team `{team.id}` does not exist.")

    monkeypatch.setattr(registry.storage, "save_team", refuse)
    with pytest.raises(NotFound):
        registry.create(GUILD, 1)
    assert registry.get_student(1).team_id(GUILD) is None
    assert registry.storage.all_teams(GUILD) == []

    monkeypatch.undo()
    assert registry.create(GUILD, 1).team.id == "g01"
    assert_consistent(registry)


def test_adding_unknown_student_keeps_team_unchanged(registry):
    registry.create_team(GUILD, 1)
    with pytest.raises(NotFound):
        registry.add_member(GUILD, "g01", 404)
    assert registry.get_team(GUILD, "g01").members == {1}
    assert_consistent(registry)


def test_admin_add_rejects_huge_identifier(registry):
    with pytest.raises(InvalidTeamId):
        registry.admin_add(GUILD, 3, "g200000")
    info = registry.guild_info(GUILD)
    assert info.count == 0
    assert info.holes == []
    assert registry.get_student(3).team_id(GUILD) is None


def test_admin_add_rejects_non_canonical_identifier(registry):
    with pytest.raises(InvalidTeamId):
        registry.admin_add(GUILD, 3, "g5")
    team = registry.admin_add(GUILD, 3, "g05")
    assert team.id == "g05"
    assert_consistent(registry)
