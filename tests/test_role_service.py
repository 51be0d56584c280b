"""
Tests for role resolution and role / mapping management.
"""

import json

import pytest

from gembot.roles.errors import (
    CannotDeleteDefaultRole,
    InvalidRoleProfile,
    RoleAlreadyExists,
    RoleConfigUnavailable,
    RoleNotFound,
)
from gembot.roles.schema import DEFAULT_GEMINI_MODEL, RoleProfile, SystemPrompt
from gembot.roles.service import RoleService


def _profile(name: str = "新角色", model: str = "gemini-1.5-flash") -> RoleProfile:
    return RoleProfile(
        name=name,
        description="測試",
        system_prompt=SystemPrompt(user="你是測試角色。", model="好的。"),
        gemini_model=model,
        sticker_reply_text="👍",
    )


def _read(path):
    return json.loads(path.read_text(encoding="utf-8"))


class TestResolveRole:
    """Resolution precedence: bot > user > group > default."""

    def test_default_when_unmapped(self, role_service):
        """Test that unknown identities get the default role."""
        role = role_service.resolve_role("U-nobody")
        assert role.role_id == "customer-service"
        assert role.name == "客服助理"

    def test_user_mapping(self, role_service):
        """Test that a user mapping applies."""
        assert role_service.resolve_role("U-sales-user").role_id == "sales"

    def test_group_mapping(self, role_service):
        """Test that a group mapping applies to unmapped users in the group."""
        assert role_service.resolve_role("U-nobody", group_id="C-tech-group").role_id == "tech"

    def test_user_beats_group(self, role_service):
        """Test that a user mapping wins over the group mapping."""
        role = role_service.resolve_role("U-sales-user", group_id="C-tech-group")
        assert role.role_id == "sales"

    def test_bot_beats_user_and_group(self, role_service):
        """Test that a bot mapping wins over everything else."""
        role_service.set_bot_role("B-bot", "tech")
        role = role_service.resolve_role("U-sales-user", group_id="C-tech-group", bot_id="B-bot")
        assert role.role_id == "tech"

        role_service.remove_bot_role("B-bot")
        assert role_service.resolve_role("U-sales-user", bot_id="B-bot").role_id == "sales"

    def test_unmapped_bot_falls_through(self, role_service):
        """Test that an unmapped bot id does not block user resolution."""
        assert role_service.resolve_role("U-sales-user", bot_id="B-other").role_id == "sales"

    def test_stale_mapping_falls_back_to_default(self, roles_path, role_service):
        """Test that a mapping to a missing role resolves to the default."""
        data = _read(roles_path)
        data["userRoleMapping"]["U-ghost"] = "deleted-role"
        roles_path.write_text(json.dumps(data), encoding="utf-8")

        assert role_service.resolve_role("U-ghost").role_id == "customer-service"

    def test_missing_default_uses_built_in_profile(self, roles_path, role_service):
        """Test that resolution never fails even if the default role is gone."""
        data = _read(roles_path)
        del data["roles"]["customer-service"]
        roles_path.write_text(json.dumps(data), encoding="utf-8")

        role = role_service.resolve_role("U-nobody")

        assert role.role_id == "customer-service"
        assert role.system_prompt.user == "你是一個專業的客服助理。"

    def test_missing_file_uses_defaults(self, tmp_path):
        """Test that a service without a file still resolves."""
        service = RoleService(tmp_path / "absent.json")
        role = service.resolve_role("U-1")
        assert role.role_id == "customer-service"
        assert role.sticker_reply_text == "謝謝您！"

    def test_corrupt_file_uses_defaults(self, roles_path, role_service):
        """Test that an unreadable file degrades to the built-in document on read only."""
        roles_path.write_text("{not json", encoding="utf-8")
        assert role_service.resolve_role("U-sales-user").role_id == "customer-service"

        with pytest.raises(RoleConfigUnavailable):
            role_service.set_user_role("U-1", "customer-service")
        with pytest.raises(RoleConfigUnavailable):
            role_service.remove_user_role("U-sales-user")
        assert roles_path.read_text(encoding="utf-8") == "{not json"

    def test_external_edits_are_picked_up(self, roles_path, role_service):
        """Test that every call re-reads the file."""
        assert role_service.resolve_role("U-new").role_id == "customer-service"

        data = _read(roles_path)
        data["userRoleMapping"]["U-new"] = "tech"
        roles_path.write_text(json.dumps(data), encoding="utf-8")

        assert role_service.resolve_role("U-new").role_id == "tech"

    def test_lenient_read_fills_defaults(self, role_service):
        """Test that missing optional fields take defaults on read."""
        tech = role_service.get_role("tech")
        assert tech.description == ""
        assert tech.sticker_reply_text == "謝謝您！"


class TestRoleQueries:
    """get_role / list_roles / role_exists."""

    def test_get_role_unknown_falls_back(self, role_service):
        """Test that get_role substitutes the default for unknown ids."""
        assert role_service.get_role("nope").role_id == "customer-service"

    def test_list_roles(self, role_service):
        """Test that all roles are listed with their ids."""
        ids = sorted(r.role_id for r in role_service.list_roles())
        assert ids == ["customer-service", "sales", "tech"]

    def test_role_exists(self, role_service):
        assert role_service.role_exists("sales")
        assert not role_service.role_exists("nope")


class TestRoleCrud:
    """Create / update / delete."""

    def test_create_role_persists(self, roles_path, role_service):
        """Test that a created role is written to disk in camelCase."""
        created = role_service.create_role("support", _profile())

        assert created.role_id == "support"
        stored = _read(roles_path)["roles"]["support"]
        assert stored["name"] == "新角色"
        assert stored["systemPrompt"] == {"user": "你是測試角色。", "model": "好的。"}
        assert stored["geminiModel"] == "gemini-1.5-flash"
        assert "roleId" not in stored

    def test_create_duplicate(self, role_service):
        """Test that ids cannot be reused."""
        with pytest.raises(RoleAlreadyExists):
            role_service.create_role("sales", _profile())

    def test_create_invalid_profile(self, role_service):
        """Test write-boundary validation."""
        bad = RoleProfile(name="", system_prompt=SystemPrompt(user="x", model=""))
        with pytest.raises(InvalidRoleProfile) as exc_info:
            role_service.create_role("bad", bad)

        problems = exc_info.value.problems
        assert "name is required" in problems
        assert "systemPrompt.model is required" in problems
        assert not role_service.role_exists("bad")

    def test_create_rejects_whitespace_id(self, role_service):
        with pytest.raises(InvalidRoleProfile):
            role_service.create_role("has space", _profile())

    def test_update_role(self, role_service):
        """Test that update replaces the whole profile."""
        role_service.update_role("tech", _profile(name="技術二線", model="gemini-1.5-pro"))
        tech = role_service.get_role("tech")
        assert tech.name == "技術二線"
        assert tech.gemini_model == "gemini-1.5-pro"

    def test_update_missing_role(self, role_service):
        with pytest.raises(RoleNotFound):
            role_service.update_role("nope", _profile())

    def test_delete_role_purges_mappings(self, roles_path, role_service):
        """Test that deleting a role removes every mapping pointing at it."""
        role_service.set_group_role("C-other", "sales")
        role_service.set_bot_role("B-1", "sales")

        role_service.delete_role("sales")

        data = _read(roles_path)
        assert "sales" not in data["roles"]
        assert "sales" not in data["userRoleMapping"].values()
        assert "sales" not in data["groupRoleMapping"].values()
        assert "sales" not in data["botRoleMapping"].values()
        # unrelated mappings survive
        assert data["groupRoleMapping"]["C-tech-group"] == "tech"
        assert role_service.resolve_role("U-sales-user").role_id == "customer-service"

    def test_cannot_delete_default_role(self, role_service):
        """Test that the default role is protected."""
        with pytest.raises(CannotDeleteDefaultRole):
            role_service.delete_role("customer-service")
        assert role_service.role_exists("customer-service")

    def test_delete_missing_role(self, role_service):
        with pytest.raises(RoleNotFound):
            role_service.delete_role("nope")

    def test_extra_fields_are_preserved(self, roles_path, role_service):
        """Test that unknown keys in a role entry survive a rewrite."""
        data = _read(roles_path)
        data["roles"]["tech"]["avatar"] = "robot.png"
        roles_path.write_text(json.dumps(data), encoding="utf-8")

        role_service.set_user_role("U-x", "tech")

        assert _read(roles_path)["roles"]["tech"]["avatar"] == "robot.png"


class TestMappings:
    """Identity mapping tables and the default role."""

    def test_set_and_remove_user_role(self, role_service):
        role_service.set_user_role("U-1", "tech")
        assert role_service.get_user_role_mappings()["U-1"] == "tech"

        assert role_service.remove_user_role("U-1") is True
        assert role_service.remove_user_role("U-1") is False
        assert "U-1" not in role_service.get_user_role_mappings()

    def test_mapping_keys_keep_their_case(self, roles_path, role_service):
        """Test that LINE ids are stored verbatim."""
        role_service.set_user_role("U4af4980629ABCdef", "sales")
        assert "U4af4980629ABCdef" in _read(roles_path)["userRoleMapping"]

    def test_set_mapping_to_unknown_role(self, role_service):
        """Test that mappings must reference an existing role."""
        with pytest.raises(RoleNotFound):
            role_service.set_group_role("C-1", "nope")
        with pytest.raises(RoleNotFound):
            role_service.set_bot_role("B-1", "nope")
        assert role_service.get_group_role_mappings() == {"C-tech-group": "tech"}

    def test_remove_group_and_bot_roles(self, role_service):
        role_service.set_bot_role("B-1", "sales")
        assert role_service.remove_bot_role("B-1") is True
        assert role_service.remove_group_role("C-tech-group") is True
        assert role_service.get_bot_role_mappings() == {}
        assert role_service.get_group_role_mappings() == {}

    def test_set_default_role(self, role_service):
        """Test that the default role can be switched to an existing role."""
        role_service.set_default_role("tech")
        assert role_service.get_default_role() == "tech"
        assert role_service.resolve_role("U-nobody").role_id == "tech"

        # the old default is now deletable
        role_service.delete_role("customer-service")

    def test_set_default_role_unknown(self, role_service):
        with pytest.raises(RoleNotFound):
            role_service.set_default_role("nope")

    def test_ensure_config_creates_file(self, tmp_path):
        """Test that ensure_config writes the default document once."""
        path = tmp_path / "sub" / "roles.json"
        service = RoleService(path)

        assert service.ensure_config() is True
        assert service.ensure_config() is False
        data = _read(path)
        assert data["defaultRole"] == "customer-service"
        assert data["roles"]["customer-service"]["stickerReplyText"] == "謝謝您！"

    def test_no_temp_files_left_behind(self, roles_path, role_service):
        """Test that atomic writes clean up after themselves."""
        role_service.set_user_role("U-1", "tech")
        leftovers = [p.name for p in roles_path.parent.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []


class TestDamagedEntries:
    """A bad field or entry in roles.json only affects itself."""

    @pytest.fixture
    def damaged_path(self, tmp_path):
        path = tmp_path / "roles.json"
        path.write_text(json.dumps({
            "version": 2,
            "roles": {
                "customer-service": {
                    "name": "客服",
                    "systemPrompt": {"user": "你是客服。", "model": "好的。"},
                },
                "sales": {
                    "name": "業務",
                    "systemPrompt": {"user": "你是業務。", "model": None},
                    "geminiModel": None,
                },
                "vip": {
                    "name": "VIP",
                    "systemPrompt": {"user": "你是 VIP 專員。", "model": "好的。"},
                    "geminiModel": "gemini-1.5-pro",
                },
                "broken": "not an object",
            },
            "userRoleMapping": {"U1": "vip", "U2": None},
            "groupRoleMapping": ["not", "a", "table"],
            "defaultRole": "customer-service",
        }, ensure_ascii=False), encoding="utf-8")
        return path

    def test_bad_field_takes_default(self, damaged_path):
        """Test that a null field is replaced by its default and the role is kept."""
        service = RoleService(damaged_path)

        sales = service.get_role("sales")
        assert sales.role_id == "sales"
        assert sales.gemini_model == DEFAULT_GEMINI_MODEL
        assert sales.system_prompt.user == "你是業務。"
        assert sales.system_prompt.model == ""

    def test_healthy_entries_still_resolve(self, damaged_path):
        """Test that mappings keep working next to a damaged role."""
        service = RoleService(damaged_path)

        vip = service.resolve_role("U1")
        assert vip.role_id == "vip"
        assert vip.gemini_model == "gemini-1.5-pro"
        assert sorted(r.role_id for r in service.list_roles()) == ["customer-service", "sales", "vip"]
        assert service.get_user_role_mappings() == {"U1": "vip"}
        assert service.get_group_role_mappings() == {}

    def test_write_keeps_operator_data(self, damaged_path):
        """Test that a mutation after a lenient read does not wipe roles or mappings."""
        service = RoleService(damaged_path)

        service.set_group_role("G1", "customer-service")

        data = _read(damaged_path)
        assert set(data["roles"]) == {"customer-service", "sales", "vip"}
        assert data["roles"]["vip"]["geminiModel"] == "gemini-1.5-pro"
        assert data["roles"]["sales"]["geminiModel"] == DEFAULT_GEMINI_MODEL
        assert data["userRoleMapping"] == {"U1": "vip"}
        assert data["groupRoleMapping"] == {"G1": "customer-service"}
        assert data["defaultRole"] == "customer-service"
        assert data["version"] == 2
        assert service.resolve_role("U1").role_id == "vip"

    def test_invalid_default_role_falls_back(self, tmp_path):
        """Test that a non-string defaultRole is replaced by the built-in id."""
        path = tmp_path / "roles.json"
        path.write_text(json.dumps({
            "roles": {"customer-service": {"name": "客服"}},
            "defaultRole": 42,
        }), encoding="utf-8")

        assert RoleService(path).get_default_role() == "customer-service"

    def test_non_object_document_blocks_writes(self, tmp_path):
        """Test that a JSON array at the top level is treated as unreadable."""
        path = tmp_path / "roles.json"
        path.write_text("[1, 2]", encoding="utf-8")
        service = RoleService(path)

        assert service.resolve_role("U1").role_id == "customer-service"
        with pytest.raises(RoleConfigUnavailable):
            service.create_role("new", _profile())
        assert path.read_text(encoding="utf-8") == "[1, 2]"
