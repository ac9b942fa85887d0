"""关联令牌协议：把多步选择向导已累积的选择编码进交互组件的 custom_id。

令牌格式：step + DELIM + 固定字段1 + ... + DELIM + 尾字段
- 固定字段保证不含 DELIM（这是生产方的前置条件，编解码本身不做转义）；
- 尾字段原样拼接，可以包含 DELIM，它通常是文件系统路径（如 C:\\repo、/home/u/my:repo）
  或带冒号的模型名（如 deepseek-r1:1.5b）。

服务端不保存任何向导状态：解码令牌即可完整还原此前的选择。
「哪个字段是尾字段」只在 STEPS 表中定义一次。
"""

from __future__ import annotations

from dataclasses import dataclass

from agent_relay.core.errors import MalformedToken

DELIM = ":"

# 平台对 custom_id 的长度上限
MAX_CUSTOM_ID_LENGTH = 100


@dataclass(frozen=True)
class StepSpec:
    """一个向导步骤的令牌形状：固定字段名列表与可选的尾字段名。"""

    name: str
    fixed_fields: tuple[str, ...] = ()
    trailing: str | None = None

    @property
    def arity(self) -> int:
        return len(self.fixed_fields) + (1 if self.trailing else 0)

    @property
    def field_names(self) -> tuple[str, ...]:
        return self.fixed_fields + ((self.trailing,) if self.trailing else ())


# ── 步骤表 ──

RUN_ADV_PROVIDER = "run-adv-provider"
RUN_ADV_WORKSPACE = "run-adv-workspace"
RUN_ADV_ROLE = "run-adv-role"
RUN_ADV_MODEL = "run-adv-model"
RUN_ADV_AUTO = "run-adv-auto"
PICK_AGENT = "pick-agent"
PICK_WEBHOOK = "pick-webhook"

STEPS: dict[str, StepSpec] = {
    spec.name: spec
    for spec in (
        StepSpec(RUN_ADV_PROVIDER),
        StepSpec(RUN_ADV_WORKSPACE, ("provider",)),
        StepSpec(RUN_ADV_ROLE, ("provider",), trailing="workspace"),
        StepSpec(RUN_ADV_MODEL, ("provider", "role"), trailing="workspace"),
        StepSpec(RUN_ADV_AUTO, ("provider", "role"), trailing="workspace"),
        StepSpec(PICK_AGENT, ("agent_id",), trailing="model"),
        StepSpec(PICK_WEBHOOK, ("webhook_id",)),
    )
}

# 前缀匹配时先试更长的步骤名，避免 run-adv-model 被更短的名字抢先
_STEPS_BY_LENGTH = sorted(STEPS, key=len, reverse=True)


@dataclass(frozen=True)
class DecodedToken:
    step: str
    fields: tuple[str, ...]

    def as_dict(self) -> dict[str, str]:
        return dict(zip(STEPS[self.step].field_names, self.fields))


def _spec(step: str, token: str = "") -> StepSpec:
    spec = STEPS.get(step)
    if spec is None:
        raise MalformedToken(step, token, "unknown step")
    return spec


def encode(step: str, *fields: str) -> str:
    """step 与字段拼成令牌；字段数与步骤表不符时抛 MalformedToken（生产方 bug）。

    前置条件：除尾字段外，字段不得包含 DELIM。
    """
    spec = _spec(step)
    if len(fields) != spec.arity:
        raise MalformedToken(step, DELIM.join(fields), f"expected {spec.arity} fields, got {len(fields)}")
    return DELIM.join((step, *fields)) if fields else step


def decode(step: str, token: str) -> list[str]:
    """按步骤表还原字段列表。

    只在前 k 个 DELIM 处切分（k 为固定字段数），其后的全部内容原样作为尾字段。
    """
    spec = _spec(step, token)
    if token == step:
        if spec.arity == 0:
            return []
        raise MalformedToken(step, token, "missing fields")
    prefix = step + DELIM
    if not token.startswith(prefix):
        raise MalformedToken(step, token, "step prefix mismatch")
    if spec.arity == 0:
        raise MalformedToken(step, token, "unexpected fields")

    rest = token[len(prefix):]
    fixed_count = len(spec.fixed_fields)
    if spec.trailing:
        parts = rest.split(DELIM, fixed_count)
        if len(parts) < fixed_count + 1:
            raise MalformedToken(step, token, f"expected at least {fixed_count + 1} fields")
    else:
        parts = rest.split(DELIM)
        if len(parts) != fixed_count:
            raise MalformedToken(step, token, f"expected {fixed_count} fields")
    return parts


def parse(token: str) -> DecodedToken:
    """不预先知道步骤时，按前缀识别步骤再解码。"""
    for step in _STEPS_BY_LENGTH:
        if token == step or token.startswith(step + DELIM):
            return DecodedToken(step=step, fields=tuple(decode(step, token)))
    raise MalformedToken("?", token, "no matching step")


def fits_platform(token: str) -> bool:
    """令牌能否直接作为平台的 custom_id。"""
    return len(token) <= MAX_CUSTOM_ID_LENGTH
