from __future__ import annotations

from pydantic import BaseModel, Field


class ChannelInfo(BaseModel):
    id: str = Field(alias="ID")
    name: str = Field(alias="Name")
    topic: str = Field(default="", alias="Topic")
    purpose: str = Field(default="", alias="Purpose")
    member_count: int = Field(default=0, alias="MemberCount")

    model_config = {"populate_by_name": True}


class UserInfo(BaseModel):
    id: str = Field(alias="ID")
    name: str = Field(alias="Name")
    real_name: str = Field(default="", alias="RealName")
    email: str = Field(default="", alias="Email")
    status: str = Field(default="active", alias="Status")
    is_bot: bool = Field(default=False, alias="IsBot")
    is_admin: bool = Field(default=False, alias="IsAdmin")
    time_zone: str = Field(default="", alias="TimeZone")
    title: str = Field(default="", alias="Title")
    phone: str = Field(default="", alias="Phone")
    enterprise_id: str = Field(default="", alias="EnterpriseID")
    enterprise_name: str = Field(default="", alias="EnterpriseName")
    team_id: str = Field(default="", alias="TeamID")
    is_org_member: bool = Field(default=False, alias="IsOrgMember")

    model_config = {"populate_by_name": True}


class EmojiInfo(BaseModel):
    name: str = Field(alias="Name")
    url: str = Field(default="", alias="URL")
    is_custom: bool = Field(default=False, alias="IsCustom")
    aliases: str = Field(default="", alias="Aliases")
    team_id: str = Field(default="", alias="TeamID")
    user_id: str = Field(default="", alias="UserID")

    model_config = {"populate_by_name": True}


class MemberInfo(BaseModel):
    user_id: str = Field(alias="user_id")
    user_name: str = Field(default="", alias="user_name")
    real_name: str = Field(default="", alias="real_name")
    is_bot: bool = Field(default=False, alias="is_bot")
    is_admin: bool = Field(default=False, alias="is_admin")
    status: str = Field(default="active", alias="status")

    model_config = {"populate_by_name": True}


class UserDetail(BaseModel):
    id: str = Field(alias="id")
    team_id: str = Field(default="", alias="team_id")
    name: str = Field(default="", alias="name")
    deleted: bool = Field(default=False, alias="deleted")
    real_name: str = Field(default="", alias="real_name")
    display_name: str = Field(default="", alias="display_name")
    email: str = Field(default="", alias="email")
    phone: str = Field(default="", alias="phone")
    title: str = Field(default="", alias="title")
    status_text: str = Field(default="", alias="status_text")
    status_emoji: str = Field(default="", alias="status_emoji")
    tz: str = Field(default="", alias="tz")
    tz_label: str = Field(default="", alias="tz_label")
    locale: str = Field(default="", alias="locale")
    is_admin: bool = Field(default=False, alias="is_admin")
    is_owner: bool = Field(default=False, alias="is_owner")
    is_restricted: bool = Field(default=False, alias="is_restricted")
    is_bot: bool = Field(default=False, alias="is_bot")
    image_192: str = Field(default="", alias="image_192")
    enterprise_id: str = Field(default="", alias="enterprise_id")
    enterprise_name: str = Field(default="", alias="enterprise_name")

    model_config = {"populate_by_name": True}
