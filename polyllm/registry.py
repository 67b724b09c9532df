"""Static model catalogs and cost helpers.

Each backend ships a :class:`ModelCatalog` built from immutable
:class:`~polyllm.domain.ModelInfo` entries. Catalogs resolve identifiers by
exact name first and by alias second.

Examples
--------
>>> catalog = ModelCatalog((ModelInfo(name="fast-model", aliases=("fast",)),))
>>> catalog.resolve("fast").name
'fast-model'
"""

from __future__ import annotations

import typing as typ
from decimal import Decimal

from polyllm.errors import ConfigError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from polyllm.domain import ModelInfo, TokenUsage

_ONE_MILLION = Decimal(1_000_000)


class ModelCatalog:
    """Read-only lookup over the models one backend supports.

    Parameters
    ----------
    models : Iterable[ModelInfo]
        Catalog entries. Names and aliases must be unique across entries.

    Raises
    ------
    ConfigError
        If two entries share a name or alias.
    """

    __slots__ = ("_by_alias", "_by_name", "_models")

    def __init__(self, models: cabc.Iterable[ModelInfo]) -> None:
        self._models = tuple(models)
        self._by_name: dict[str, ModelInfo] = {}
        self._by_alias: dict[str, ModelInfo] = {}
        for info in self._models:
            if info.name in self._by_name:
                msg = f"Duplicate model name in catalog: {info.name!r}."
                raise ConfigError(msg)
            self._by_name[info.name] = info
        for info in self._models:
            for alias in info.aliases:
                if alias in self._by_name or alias in self._by_alias:
                    msg = f"Duplicate model alias in catalog: {alias!r}."
                    raise ConfigError(msg)
                self._by_alias[alias] = info

    def __iter__(self) -> cabc.Iterator[ModelInfo]:
        return iter(self._models)

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, name: object) -> bool:
        return self.find(str(name)) is not None

    def find(self, name: str) -> ModelInfo | None:
        """Return the entry matching ``name`` or one of its aliases."""
        return self._by_name.get(name) or self._by_alias.get(name)

    def resolve(self, name: str) -> ModelInfo:
        """Return the entry for ``name``.

        Raises
        ------
        ConfigError
            If neither a name nor an alias matches.
        """
        info = self.find(name)
        if info is None:
            known = ", ".join(sorted(self._by_name)) or "none"
            msg = f"Unknown model {name!r}. Available: {known}."
            raise ConfigError(msg)
        return info


def estimate_cost(info: ModelInfo, usage: TokenUsage | None) -> Decimal | None:
    """Return the cost of ``usage`` in ``info.currency``.

    Parameters
    ----------
    info : ModelInfo
        Model whose per-million-token prices apply.
    usage : TokenUsage | None
        Usage reported by the backend.

    Returns
    -------
    Decimal | None
        The cost, or ``None`` when usage or either price is unavailable.
    """
    if (
        usage is None
        or info.prompt_token_cost_per_1m is None
        or info.completion_token_cost_per_1m is None
    ):
        return None
    prompt_price = Decimal(str(info.prompt_token_cost_per_1m))
    completion_price = Decimal(str(info.completion_token_cost_per_1m))
    return (
        Decimal(usage.prompt_tokens) / _ONE_MILLION * prompt_price
        + Decimal(usage.completion_tokens) / _ONE_MILLION * completion_price
    )


__all__ = ["ModelCatalog", "estimate_cost"]
