"""配置校验错误格式化。

Pydantic 的原始报错对 typo 不够友好：对 `extra_forbidden` 追加 "did you mean" 建议，
其余错误按 `a.b.c: message` 逐行输出。
"""

from __future__ import annotations

import difflib
from typing import Iterable

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError


def _suggest_key(key: str, allowed: Iterable[str]) -> str | None:
    matches = difflib.get_close_matches(key, list(allowed), n=1, cutoff=0.75)
    return matches[0] if matches else None


def _allowed_keys(model: type[BaseModel], loc: tuple) -> set[str]:
    """沿 loc 路径找到对应子模型的字段集合。"""
    current: type[BaseModel] | None = model
    for part in loc:
        if current is None or not isinstance(part, str):
            return set()
        field = current.model_fields.get(part)
        if field is None:
            return set(current.model_fields)
        ann = field.annotation
        nested = None
        for cand in (ann, *getattr(ann, "__args__", ())):
            if isinstance(cand, type) and issubclass(cand, BaseModel):
                nested = cand
                break
        current = nested
    return set(current.model_fields) if current is not None else set()


def format_validation_error(exc: PydanticValidationError, model: type[BaseModel]) -> str:
    lines = []
    for err in exc.errors():
        loc = tuple(err.get("loc", ()))
        path = ".".join(str(p) for p in loc) or "<root>"
        if err.get("type") == "extra_forbidden" and loc:
            suggestion = _suggest_key(str(loc[-1]), _allowed_keys(model, loc[:-1]))
            if suggestion:
                lines.append(f"{path}: unknown key (did you mean '{suggestion}'?)")
                continue
            lines.append(f"{path}: unknown key")
            continue
        lines.append(f"{path}: {err.get('msg')}")
    return "Invalid config: " + "; ".join(lines)
