"""
配置加载器（YAML）。

设计目标：
- 支持加载多个 YAML，并按顺序做深度合并（后者覆盖前者）；
- 默认配置随包发布：`action_runtime/assets/default.yaml`，作为最底层 overlay；
- 使用 pydantic 做 schema 校验；默认拒绝未知字段（避免拼写错误与误配置被静默吞掉）。
"""

from __future__ import annotations

from copy import deepcopy
from importlib import resources
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableMapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from action_runtime.safety.policy import PermissionProfile, StaticPermissionProfileStore


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型：overlay 直接覆盖
    - list：整体覆盖（不做去重/拼接）
    """

    for key, overlay_value in overlay.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(overlay_value, Mapping)
        ):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


class ActionRuntimeRunConfig(BaseModel):
    """
    turn 运行参数。

    字段：
    - single_action_per_turn：每个 turn 至多执行一个 action（之后的 action 块产出 ValidationError）
    - max_mistakes：mistake_count 达到该值时标记 `mistake_limit_reached`（None 表示不统计上限）
    - max_block_chars：单个 action 块的最大字符数（超出视为流解析致命错误）
    - envelope_tag：信封标签名（`<act name="...">`）；null 表示只识别裸标签
    - handler_timeout_ms：handler 执行超时（None 表示不限制）
    """

    model_config = ConfigDict(extra="forbid")

    single_action_per_turn: bool = True
    max_mistakes: Optional[int] = Field(default=3, ge=1)
    max_block_chars: int = Field(default=1_000_000, ge=1)
    envelope_tag: Optional[str] = Field(default="act")
    handler_timeout_ms: Optional[int] = Field(default=None, ge=1)


class ActionRuntimeSafetyConfig(BaseModel):
    """
    Safety 配置（权限 profile + 审批）。

    说明：
    - `approval_timeout_ms` 限制“等待人类审批”的最长时间，超时按 denied 处理；
    - `auto_approve_*` 命中时不进入挂起点，直接 approved；
    - `active_profile` 必须是 `profiles` 中的某个 name。
    """

    model_config = ConfigDict(extra="forbid")

    approval_timeout_ms: int = Field(default=60_000, ge=1)
    auto_approve_actions: List[str] = Field(default_factory=list)
    auto_approve_categories: List[str] = Field(default_factory=list)
    always_available_actions: List[str] = Field(default_factory=list)
    active_profile: str = "default"
    profiles: List[PermissionProfile] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_active_profile(self) -> "ActionRuntimeSafetyConfig":
        """校验 active_profile 存在且 profile 名不重复。"""

        names = [p.name for p in self.profiles]
        if len(set(names)) != len(names):
            raise ValueError("safety.profiles[].name must be unique")
        if self.active_profile not in names:
            raise ValueError(f"safety.active_profile must be one of: {names}; got: {self.active_profile}")
        return self


class ActionRuntimeConfig(BaseModel):
    """SDK 配置根对象。"""

    model_config = ConfigDict(extra="forbid")

    config_version: int = Field(default=1, ge=1)
    run: ActionRuntimeRunConfig = Field(default_factory=ActionRuntimeRunConfig)
    safety: ActionRuntimeSafetyConfig

    def build_profile_store(self) -> StaticPermissionProfileStore:
        """由配置构造内存 profile 存储。"""

        return StaticPermissionProfileStore(profiles=self.safety.profiles, active=self.safety.active_profile)


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """读取 YAML 文件为 dict；空文件返回空 dict。"""

    if not path.exists():
        raise FileNotFoundError(f"配置文件不存在：{path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"配置文件根节点必须为 mapping(dict)：{path}")
    return data


def load_default_config_dict() -> Dict[str, Any]:
    """读取随包发布的默认配置（`assets/default.yaml`）。"""

    text = resources.files("action_runtime").joinpath("assets/default.yaml").read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    return dict(data or {})


def load_config_dicts(config_dicts: List[Dict[str, Any]], *, include_defaults: bool = True) -> ActionRuntimeConfig:
    """
    加载并合并多个 dict 配置，返回校验后的 `ActionRuntimeConfig`。

    参数：
    - config_dicts：按顺序做深度合并（后者覆盖前者）
    - include_defaults：是否以包内默认配置作为最底层
    """

    merged: Dict[str, Any] = load_default_config_dict() if include_defaults else {}
    for overlay in config_dicts:
        if not overlay:
            continue
        _deep_merge(merged, overlay)
    return ActionRuntimeConfig.model_validate(merged)


def load_config(config_paths: List[Path], *, include_defaults: bool = True) -> ActionRuntimeConfig:
    """
    加载并合并多个配置文件，返回校验后的 `ActionRuntimeConfig`。

    参数：
    - config_paths：YAML 路径列表；按顺序合并（后者覆盖前者）
    """

    overlays: List[Dict[str, Any]] = []
    for path in config_paths:
        overlays.append(_load_yaml_file(Path(path)))
    return load_config_dicts(overlays, include_defaults=include_defaults)


def load_default_config() -> ActionRuntimeConfig:
    """返回仅包含默认值的配置。"""

    return load_config_dicts([])
