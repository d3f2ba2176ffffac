"""
Data models for storage layer.

Defines provider configuration records and their snapshot encoding.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ProviderConfig:
    """A named, credentialed binding to one provider endpoint and model.

    Records are replaced as a whole; there is no partial update. The API key
    is kept out of ``repr`` so configs can be logged safely.
    """
    id: str
    name: str
    api_key: str = field(repr=False)
    model: str
    max_tokens: int
    temperature: float
    base_url: Optional[str] = None
    cost_per_1k_tokens: Optional[float] = None

    def __post_init__(self):
        """Validate configuration values."""
        if not self.id or not self.id.strip():
            raise ValueError("id is required and cannot be empty")
        if not self.name or not self.name.strip():
            raise ValueError("name is required and cannot be empty")
        if not self.api_key or not self.api_key.strip():
            raise ValueError("api_key is required and cannot be empty")
        if not self.model or not self.model.strip():
            raise ValueError("model is required and cannot be empty")
        if isinstance(self.max_tokens, bool) or not isinstance(self.max_tokens, int) or self.max_tokens <= 0:
            raise ValueError("max_tokens must be a positive integer")
        if isinstance(self.temperature, bool) or not isinstance(self.temperature, (int, float)):
            raise ValueError("temperature must be a number")
        if not 0 <= self.temperature <= 2:
            raise ValueError("temperature must be between 0 and 2")
        if self.cost_per_1k_tokens is not None and self.cost_per_1k_tokens < 0:
            raise ValueError("cost_per_1k_tokens must be >= 0")

    @classmethod
    def create(
        cls,
        name: str,
        api_key: str,
        model: str,
        max_tokens: int,
        temperature: float,
        base_url: Optional[str] = None,
        cost_per_1k_tokens: Optional[float] = None,
    ) -> "ProviderConfig":
        """Create a new configuration with a freshly assigned id."""
        return cls(
            id=uuid.uuid4().hex,
            name=name,
            api_key=api_key,
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            base_url=base_url or None,
            cost_per_1k_tokens=cost_per_1k_tokens,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Encode as a snapshot record."""
        return {
            "id": self.id,
            "name": self.name,
            "apiKey": self.api_key,
            "model": self.model,
            "baseUrl": self.base_url,
            "maxTokens": self.max_tokens,
            "temperature": self.temperature,
            "costPer1kTokens": self.cost_per_1k_tokens,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProviderConfig":
        """Decode a snapshot record.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a field has an invalid value
        """
        cost = data.get("costPer1kTokens")
        return cls(
            id=data["id"],
            name=data["name"],
            api_key=data["apiKey"],
            model=data["model"],
            max_tokens=data["maxTokens"],
            temperature=data["temperature"],
            base_url=data.get("baseUrl") or None,
            cost_per_1k_tokens=float(cost) if cost is not None else None,
        )

    def masked_api_key(self) -> str:
        """API key with all but the last four characters hidden."""
        if len(self.api_key) <= 4:
            return "*" * len(self.api_key)
        return "*" * 8 + self.api_key[-4:]
