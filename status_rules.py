"""
Status rule table for the automation dispatcher.

A rule maps status substrings to an ordered list of actions run against a
subitem chosen by a positional policy. Rules are evaluated top to bottom and
the first one whose substring occurs in the case-folded status wins, so a rule
for "não pago" must come before any rule matching "pago". The final rule
matches everything and carries the standard completion actions.

The table can be replaced at deploy time with the ``STATUS_RULES`` environment
variable (same JSON shape as ``DEFAULT_STATUS_RULES``).
"""
from collections import namedtuple

import config
from event_normalizer import normalize_status

RULES_VERSION = 3

LAST = 'last'
PENULTIMATE = 'penultimate'
ANTEPENULTIMATE = 'antepenultimate'
ALL = 'all'
TARGET_POLICIES = (LAST, PENULTIMATE, ANTEPENULTIMATE, ALL)

# Offset from the end of the subitem list for each positional policy.
POLICY_OFFSETS = {LAST: 1, PENULTIMATE: 2, ANTEPENULTIMATE: 3}

DATE_COLUMN_TITLE = 'FINALIZAÇÃO'
CHECK_COLUMN_TITLE = 'CONCLUIDO'
OWNER_COLUMN_TITLE = 'RESPONSÁVEL'
DOC_EXTERNO_COLUMN_TITLE = 'DOC EXTERNO'
ABRIR_OS_SUBITEM_NAME = 'ABRIR O. S.'
MATRICULA_OWNER_ID = 69279625

ACCEPTED_STATUSES = frozenset(normalize_status(s) for s in [
    'abrir conta', 'comercial', 'documentos', 'caixaaqui', 'doc pendente', 'assinatura',
    'restrição', 'conformidade', 'avaliação', 'conta ativa', 'desist/demora', 'aprovado',
    'condicionado', 'reprovado', 'analise', 'engenharia', 'projetos', 'pago', 'não pago',
    'escritura', 'ab matricula', 'alvará', 'pci', 'o.s concluida', 'proj aprovado',
    'unificação', 'desmembramento', 'concluido',
    'prospecção', 'abertura de conta', 'montagem de dossiê', 'desistente/inativo',
])

STANDARD_ACTIONS = [
    {"type": "set_date_if_empty", "column": DATE_COLUMN_TITLE, "column_type": "date"},
    {"type": "set_checked", "column": CHECK_COLUMN_TITLE, "column_type": "checkbox", "only_if_date_written": True},
]

# Sets a subitem's control status to "Fechado"; the column is resolved by title on the subitem board.
CLOSE_SUBITEM_ACTION = {
    "type": "set_status_index", "column": config.SUBITEM_STATUS_COLUMN, "column_type": "status", "index": config.FECHADO_STATUS_INDEX,
}

DEFAULT_STATUS_RULES = [
    {
        "name": "matricula_owner",
        "match": ["ab matricula"],
        "target": PENULTIMATE,
        "delay_seconds": 10,
        "actions": [
            {"type": "assign_owner", "column": OWNER_COLUMN_TITLE, "column_type": "people", "user_id": MATRICULA_OWNER_ID},
        ],
    },
    {
        "name": "unificacao_doc_externo",
        "match": ["unificação"],
        "target": LAST,
        "actions": STANDARD_ACTIONS + [
            {"type": "set_label", "on_parent": True, "column": DOC_EXTERNO_COLUMN_TITLE, "column_type": "status", "label": "DOC - UNIFICAÇÃO"},
        ],
    },
    {
        "name": "desmembramento_doc_externo",
        "match": ["desmembramento"],
        "target": LAST,
        "actions": STANDARD_ACTIONS + [
            {"type": "set_label", "on_parent": True, "column": DOC_EXTERNO_COLUMN_TITLE, "column_type": "status", "label": "DOC - DESMEMBRAMENTO"},
        ],
    },
    {
        "name": "os_concluida",
        "match": ["o.s concluida"],
        "target": PENULTIMATE,
        "actions": STANDARD_ACTIONS + [
            {"type": "set_checked", "subitem_name": ABRIR_OS_SUBITEM_NAME, "column": CHECK_COLUMN_TITLE, "column_type": "checkbox"},
        ],
    },
    {
        "name": "projeto_aprovado",
        "match": ["proj aprovado"],
        "target": ANTEPENULTIMATE,
        "delay_seconds": 5,
        "actions": STANDARD_ACTIONS,
    },
    {
        "name": "release_owner",
        "match": ["desist/demora", "reprovado", "não pago"],
        "target": LAST,
        "actions": [
            {"type": "remove_owner", "column": OWNER_COLUMN_TITLE, "column_type": "people"},
            {"type": "stop_time_tracking", "column": "TEMPO", "column_type": "time_tracking"},
        ],
    },
    {
        "name": "close_all_subitems",
        "match": ["prospecção", "abertura de conta", "montagem de dossiê", "desistente/inativo"],
        "target": ALL,
        "actions": [CLOSE_SUBITEM_ACTION],
    },
    {
        "name": "standard_completion",
        "match": [""],
        "target": LAST,
        "actions": STANDARD_ACTIONS,
    },
]


class StatusRule(namedtuple('StatusRule', ['name', 'match', 'target', 'actions', 'delay_seconds'])):
    __slots__ = ()

    @classmethod
    def from_dict(cls, data):
        target = data.get('target', LAST)
        if target not in TARGET_POLICIES:
            raise ValueError(f"Unknown target policy '{target}' in rule '{data.get('name')}'")
        return cls(
            name=data['name'],
            match=tuple(normalize_status(m) for m in data.get('match', [])),
            target=target,
            actions=list(data.get('actions', [])),
            delay_seconds=int(data.get('delay_seconds', 0)),
        )

    def matches(self, status_text):
        normalized = normalize_status(status_text)
        return any(token in normalized for token in self.match)


def load_rules(raw_rules=None):
    if raw_rules is None:
        raw_rules = config.STATUS_RULES or DEFAULT_STATUS_RULES
    return [StatusRule.from_dict(rule) for rule in raw_rules]


STATUS_RULES = load_rules()


def is_accepted_status(status_text):
    return normalize_status(status_text) in ACCEPTED_STATUSES


def match_rule(status_text, rules=None):
    """Returns the first rule matching the status, or None."""
    for rule in (STATUS_RULES if rules is None else rules):
        if rule.matches(status_text):
            return rule
    return None


def select_target_subitem(subitems, policy):
    """Picks one subitem by position; short lists fall back toward the last one."""
    if not subitems:
        return None
    offset = min(POLICY_OFFSETS[policy], len(subitems))
    return subitems[-offset]


def resolve_targets(subitems, policy):
    if policy == ALL:
        return list(subitems or [])
    target = select_target_subitem(subitems, policy)
    return [target] if target else []
