from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Tuple


@dataclass(frozen=True)
class DetectionResult:
    """检测服务的返回结果。

    predictions 中每一项的内容（类别、置信度、框坐标）随模型而变，这里原样透传，
    只保证数量和顺序与响应一致。
    """

    predictions: Tuple[Mapping[str, Any], ...] = ()
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_payload(cls, payload: Any) -> "DetectionResult":
        if not isinstance(payload, dict):
            raise ValueError("response is not a JSON object")
        predictions = payload.get("predictions")
        if not isinstance(predictions, list):
            raise ValueError("response has no 'predictions' list")
        for index, item in enumerate(predictions):
            if not isinstance(item, dict):
                raise ValueError(f"prediction #{index} is not an object")
        return cls(predictions=tuple(predictions), raw=payload)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.raw)
        data["predictions"] = [dict(p) for p in self.predictions]
        return data
