# SMB BackOffice - Data import & reconciliation engine for SMB bookkeeping
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Schema registry for SMB BackOffice.

This module defines the static catalog of importable entity templates. A
template describes one kind of business record (clients, products, bank
accounts, financial transactions, ...) and holds everything the import
engine needs to reconcile foreign data against it:

- the ordered list of target fields,
- the subset of required fields,
- an ordered list of header aliases per field,
- the natural-key fields used for duplicate detection,
- default values for omitted optional fields,
- foreign references to other entity types.

Templates are pure data. They are built once at import time of this module
and shared by every import, export and deletion operation. New header
synonyms are added to ``_ALIAS_CATALOG``, not to code.

This module exposes:
- EntityTemplate: immutable description of one entity type.
- TEMPLATES:      the registry, keyed by entity_key, in registry order.
- get_template(): registry lookup raising UnknownEntityError.
- NUMERIC_FIELDS / DATE_FIELDS: entity-independent coercion tables.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .errors import UnknownEntityError

# ---------------------------------------------------------------------------
# Coercion tables (entity independent)
# ---------------------------------------------------------------------------

NUMERIC_FIELDS = frozenset(
    {
        "cost_price",
        "sale_price",
        "stock_quantity",
        "min_stock",
        "initial_balance",
        "salary",
        "estimated_hours",
        "amount",
        "paid_amount",
    }
)

DATE_FIELDS = frozenset({"due_date", "paid_date", "hire_date"})


@dataclass(frozen=True)
class EntityTemplate:
    """Description of one importable entity type.

    Attributes:
        entity_key: Stable identifier, also the store table name.
        display_name: Human-readable label.
        fields: Target field names, in declaration order.
        required_fields: Fields that must be present in every record.
        aliases: Field name → ordered header synonyms. First listed wins.
        natural_keys: Ordered fields checked against the store to detect
            records that already exist.
        defaults: Field name → value applied when the field is absent.
        references: Field name → referenced entity_key.
    """

    entity_key: str
    display_name: str
    fields: tuple[str, ...]
    required_fields: frozenset[str]
    aliases: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    natural_keys: tuple[str, ...] = ()
    defaults: Mapping[str, Any] = field(default_factory=dict)
    references: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        known = set(self.fields)
        if len(known) != len(self.fields):
            raise ValueError(f"Template {self.entity_key!r} declares a field twice.")

        checks = {
            "required_fields": self.required_fields,
            "aliases": self.aliases.keys(),
            "natural_keys": self.natural_keys,
            "defaults": self.defaults.keys(),
            "references": self.references.keys(),
        }
        for attr, names in checks.items():
            unknown = set(names) - known
            if unknown:
                raise ValueError(
                    f"Template {self.entity_key!r}: {attr} refers to unknown "
                    f"field(s): {', '.join(sorted(unknown))}"
                )

        # Freeze the mappings so that templates cannot be mutated at runtime.
        object.__setattr__(
            self,
            "aliases",
            MappingProxyType({k: tuple(v) for k, v in self.aliases.items()}),
        )
        object.__setattr__(self, "defaults", MappingProxyType(dict(self.defaults)))
        object.__setattr__(
            self, "references", MappingProxyType(dict(self.references))
        )

    def aliases_for(self, field_name: str) -> tuple[str, ...]:
        """Return the ordered header synonyms for a field (may be empty)."""
        return self.aliases.get(field_name, ())

    def header(self, delimiter: str = ",") -> str:
        """Return a blank import header line for this template."""
        return delimiter.join(self.fields)


# ---------------------------------------------------------------------------
# Alias catalog
# ---------------------------------------------------------------------------

# Curated synonyms seen in exports of legacy systems. Order matters: the
# first alias present (and non-empty) in a source row wins.
_ALIAS_CATALOG: dict[str, tuple[str, ...]] = {
    "name": ("nome", "razao_social", "razão social", "nome_fantasia"),
    "email": ("e-mail", "e_mail", "correio"),
    "phone": ("telefone", "tel", "celular", "fone"),
    "cpf": ("documento_cpf",),
    "cnpj": ("documento_cnpj",),
    "company_name": ("razao_social", "razão social", "empresa"),
    "address": ("endereco", "endereço", "logradouro"),
    "city": ("cidade", "municipio", "município"),
    "state": ("estado", "uf"),
    "zipcode": ("cep", "codigo_postal"),
    "notes": ("observacoes", "observações", "obs"),
    "cost_price": ("preco_custo", "preço_custo", "custo"),
    "sale_price": ("preco_venda", "preço_venda", "venda", "preco", "preço"),
    "stock_quantity": ("estoque", "quantidade", "qtd"),
    "min_stock": ("estoque_minimo", "estoque_mínimo"),
    "description": ("descricao", "descrição", "desc"),
    "sku": ("codigo", "código", "cod"),
    "unit": ("unidade", "un"),
    "category": ("categoria",),
    "estimated_hours": ("horas_estimadas", "horas"),
    "bank_name": ("banco",),
    "agency": ("agencia", "agência"),
    "account_number": ("conta", "numero_conta", "número_conta"),
    "account_type": ("tipo_conta",),
    "initial_balance": ("saldo_inicial", "saldo"),
    "position": ("cargo", "funcao", "função"),
    "salary": ("salario", "salário"),
    "hire_date": ("data_admissao", "data_admissão", "admissao"),
    "type": ("tipo",),
    "status": ("situacao", "situação"),
    "amount": ("valor", "value"),
    "paid_amount": ("valor_pago",),
    "due_date": ("vencimento", "data_vencimento", "data"),
    "paid_date": ("data_pagamento", "pagamento"),
}


def _aliases_for(fields: tuple[str, ...]) -> dict[str, tuple[str, ...]]:
    """Select the catalog entries relevant to the given fields."""
    return {f: _ALIAS_CATALOG[f] for f in fields if f in _ALIAS_CATALOG}


def _template(
    entity_key: str,
    display_name: str,
    fields: tuple[str, ...],
    required: tuple[str, ...],
    *,
    natural_keys: tuple[str, ...] = (),
    defaults: Mapping[str, Any] | None = None,
    references: Mapping[str, str] | None = None,
) -> EntityTemplate:
    return EntityTemplate(
        entity_key=entity_key,
        display_name=display_name,
        fields=fields,
        required_fields=frozenset(required),
        aliases=_aliases_for(fields),
        natural_keys=natural_keys,
        defaults=defaults or {},
        references=references or {},
    )


_PARTY_FIELDS = (
    "name",
    "email",
    "phone",
    "document_type",
    "cpf",
    "cnpj",
    "company_name",
    "address",
    "city",
    "state",
    "zipcode",
    "notes",
)

_ALL_TEMPLATES = (
    _template(
        "bank_accounts",
        "Bank accounts",
        (
            "name",
            "bank_name",
            "agency",
            "account_number",
            "account_type",
            "initial_balance",
        ),
        ("name",),
        natural_keys=("name", "account_number"),
        defaults={"initial_balance": 0},
    ),
    _template(
        "categories",
        "Categories",
        ("name", "type"),
        ("name", "type"),
        natural_keys=("name",),
        defaults={"type": "expense"},
    ),
    _template(
        "payment_methods",
        "Payment methods",
        ("name",),
        ("name",),
        natural_keys=("name",),
    ),
    _template(
        "clients",
        "Clients",
        _PARTY_FIELDS,
        ("name",),
        natural_keys=("name", "cpf", "cnpj", "email"),
    ),
    _template(
        "suppliers",
        "Suppliers",
        _PARTY_FIELDS,
        ("name",),
        natural_keys=("name", "cpf", "cnpj", "email"),
    ),
    _template(
        "products",
        "Products",
        (
            "name",
            "description",
            "sku",
            "unit",
            "cost_price",
            "sale_price",
            "stock_quantity",
            "min_stock",
            "category",
        ),
        ("name",),
        natural_keys=("name", "sku"),
        defaults={"stock_quantity": 0, "cost_price": 0, "sale_price": 0, "unit": "UN"},
    ),
    _template(
        "services",
        "Services",
        (
            "name",
            "description",
            "cost_price",
            "sale_price",
            "estimated_hours",
            "category",
        ),
        ("name",),
        natural_keys=("name",),
        defaults={"cost_price": 0, "sale_price": 0},
    ),
    _template(
        "employees",
        "Employees",
        ("name", "email", "phone", "cpf", "position", "salary", "hire_date"),
        ("name",),
        natural_keys=("name", "cpf", "email"),
    ),
    _template(
        "transactions",
        "Financial transactions",
        (
            "description",
            "amount",
            "type",
            "status",
            "due_date",
            "paid_date",
            "paid_amount",
            "notes",
            "bank_account_id",
            "category_id",
            "client_id",
            "supplier_id",
            "payment_method_id",
        ),
        ("description", "amount", "due_date"),
        defaults={"type": "expense", "status": "pending"},
        references={
            "bank_account_id": "bank_accounts",
            "category_id": "categories",
            "client_id": "clients",
            "supplier_id": "suppliers",
            "payment_method_id": "payment_methods",
        },
    ),
)

TEMPLATES: Mapping[str, EntityTemplate] = MappingProxyType(
    {t.entity_key: t for t in _ALL_TEMPLATES}
)


def get_template(entity_key: str) -> EntityTemplate:
    """Return the registered template for ``entity_key``.

    Raises:
        UnknownEntityError: if no template is registered under that key.
    """
    try:
        return TEMPLATES[entity_key]
    except KeyError:
        raise UnknownEntityError(entity_key) from None


def list_templates() -> list[EntityTemplate]:
    """Return all registered templates, in registry order."""
    return list(TEMPLATES.values())


def template_header(entity_key: str, delimiter: str = ",") -> str:
    """Return the header line of a blank import file for ``entity_key``."""
    return get_template(entity_key).header(delimiter)
