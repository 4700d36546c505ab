"""
Classification Service - AI classification of trial balance accounts.

Builds the classification prompt from account descriptions and a
hierarchical taxonomy, sends it to a text-generation provider and turns
the CSV-style answer back into rows of
``[account type, primary, secondary, tertiary]``.

Taxonomy shape::

    {<account type>: {<primary>: {<secondary>: [<tertiary>, ...]}}}
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import requests

from services.errors import ClassificationError

logger = logging.getLogger(__name__)

CLASSIFICATION_LEVELS = ['account_type', 'primary', 'secondary', 'tertiary']

DEFAULT_MODEL = 'gpt-4-turbo'
DEFAULT_TEMPERATURE = 0.1
DEFAULT_MAX_TOKENS = 1500
DEFAULT_PROMPT_ENGINE_URL = 'https://api.jigsawstack.com/v1/prompt_engine/run'

SYSTEM_PROMPT = (
    "You are a professional accountant with expertise in financial statement classification. "
    "You have access to a comprehensive classification structure for trial balance entries. "
    "The structure is organized hierarchically as: "
    "{{<account type>: {{<primary classification>: {{<secondary classification>: [<tertiary classification>]}}}}}}.\n\n"
    "Classification Structure:\n{classifications}"
)

USER_PROMPT = (
    "Using the provided classification structure, classify each entry into its account type, "
    "primary, secondary, and tertiary classification. Return a response of ONLY valid "
    "comma-separated (CSV) list of classifications (in the format <account type>, "
    "<primary classification>, <secondary classification>, <tertiary classification>), "
    "one line per entry, maintaining the exact order of the input.\n\n"
    "Entries to classify:\n{entries}"
)

# Canned answer used for offline development and demos
SAMPLE_RESPONSE = """Revenue/Income, Revenue, Sales of trading goods, Wholesale Trade - Others  
Revenue/Income, Other Income, Other Income  
Cost/Expense, Cost of Sales, Cost of Sales for Merchandise Trade, Purchases For Merchandise Trade - Wholesale Merchandise - Others  
Cost/Expense, Other Expenses, Other Expenses  
Liability, Trade and Other Payables, Trade and Other Payables, Bank Charges and Fees  
Cost/Expense, Administration and Other Expenses, Professional Service Charges, Company Incorporation Expenses  
Cost/Expense, Administration and Other Expenses, Directors' Remuneration and CPF Contributions, Directors' Remuneration - Full-time/part-time Staff (Net CPF)  
Cost/Expense, Administration and Other Expenses, Directors' Remuneration and CPF Contributions, Directors' Remuneration - Employer CPF Expense  
Cost/Expense, Administration and Other Expenses, Directors' Benefits in Kind, Directors' Remuneration - Benefits in Kind (Net CPF)  
Cost/Expense, Administration and Other Expenses, Professional Service Charges, Accounting, Audit, Tax and Secretarial Expenses  
Cost/Expense, Administration and Other Expenses, Depreciation Expense, Depreciation of Other Assets  
Cost/Expense, Administration and Other Expenses, Directors' Remuneration and CPF Contributions, Directors' Remuneration - Employer CPF Expense  
Cost/Expense, Administration and Other Expenses, Office Administration Expenses, Expensed Assets  
Cost/Expense, Marketing and Distribution Expenses, Meal and Entertainment Expenses, Meal and Entertainment Expenses  
Cost/Expense, Marketing and Distribution Expenses, Transportation Expenses, Freight Out Expenses  
Cost/Expense, Administration and Other Expenses, IT And Communication , Other IT and Communication Expenses  
Cost/Expense, Administration and Other Expenses, Professional Service Charges, Legal Expenses  
Cost/Expense, Administration and Other Expenses, Other Staff Costs, Other Employee Benefits - Medical expenses and insurance (non-regulatory)  
Cost/Expense, Administration and Other Expenses, Professional Service Charges, Other Professional Service Expenses  
Cost/Expense, Administration and Other Expenses, Office Administration Expenses, Other Office Administration Expenses   
Cost/Expense, Administration and Other Expenses, Office Administration Expenses, Printing Expenses  
Cost/Expense, Administration and Other Expenses, Other Staff Costs, Administration Office Staff Cost - Skill Development Fund  
Cost/Expense, Administration and Other Expenses, Other Staff Costs, Other Employee Benefits - Expenses associated gambling and game of chances  
Cost/Expense, Administration and Other Expenses, Employee Benefit Expenses, Staff Remuneration and CPF Contributions  
Cost/Expense, Marketing and Distribution Expenses, Transportation Expenses, Public Transport Expenses  
Cost/Expense, Marketing and Distribution Expenses, Overseas Travels, Other Travel Expenses  
Revenue/Income, Other Income, Foreign exchange Gain, Unrealised Foreign Exchange Gain  
Revenue/Income, Other Income, Foreign exchange Gain, Unrealised Foreign Exchange Gain  
Revenue/Income, Other Income, Foreign exchange Gain, Unrealised Foreign Exchange Gain  
Revenue/Income, Other Income, Foreign exchange Gain, Realised Foreign Exchange Gain  
Cost/Expense, Income Tax Expense, Corporate Income Taxes, Income Tax Expense  
Asset, Cash and Cash Equivalents, Bank Balances, Bank Balances  
Asset, Cash and Cash Equivalents, Bank Balances, Bank Balances  
Asset, Cash and Cash Equivalents, Bank Balances, Bank Balances  
Asset, Cash and Cash Equivalents, Bank Balances, Bank Balances  
Asset, Cash and Cash Equivalents, Bank Balances, Bank Balances  
Asset, Trade and Other Receivables, Trade Receivables, Trade Receivables  
Asset, Other Current Assets, Accrued Assets, Deferred Expenses  
Asset, Property, plant and equipment, Office Machine and Equipment, Office Equipment  
Asset, Property, plant and equipment, Office Machine and Equipment, Office Equipment  
Asset, Property, plant and equipment, Office Machine and Equipment, Computers and Applications  
Asset, Property, plant and equipment, Office Machine and Equipment, Computers and Applications  
Liability, Trade and Other Payables, Trade and Other Payables, Trade Payables  
Liability, Loans and Borrowings, Other Loans Payable, Other Loan Payable  
Liability, Other Current Liabilities, Tax Related Payables, Goods and Services Tax Payable  
Liability, Contract Liabilities, Contract Liabilities, Contract Liabilities  
Liability, Other Current Liabilities, Accrued Liabilities, Accrued Expenses  
Liability, Income Tax Payable, Income Tax Payable, Corporate Tax Payable  
Equity, Retained Profit or Loss, Retained Earnings, Profit and Loss For The Period  
Equity, Issued Capital, Paid Up Capital, Paid Up Capital - Ordinary Shares"""


def load_taxonomy(path: str) -> Dict[str, Any]:
    """Load the classification structure from a JSON file."""
    try:
        with open(Path(path), 'r', encoding='utf-8') as f:
            taxonomy = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ClassificationError(f"Could not load classifications from {path}: {e}") from e

    if not isinstance(taxonomy, dict):
        raise ClassificationError(f"Classifications in {path} must be a JSON object")

    logger.info(f"Loaded {len(taxonomy)} account types from {path}")
    return taxonomy


# ---------------------------------------------------------------------------
# Request side
# ---------------------------------------------------------------------------

def extract_entries(sheets: Any) -> List[str]:
    """
    Account descriptions to classify, in order.

    ``sheets`` is ``[{'name': ..., 'data': [[{'value': ...}, ...], ...]}]``
    with header rows already removed. Only rows with at least four cells
    contribute; the first cell is the description.
    """
    if not isinstance(sheets, list):
        raise ClassificationError('Invalid data format')

    entries = []
    for sheet in sheets:
        rows = sheet.get('data') if isinstance(sheet, dict) else None
        if not isinstance(rows, list):
            continue

        for row in rows:
            if isinstance(row, list) and len(row) >= 4:
                first = row[0] if isinstance(row[0], dict) else {}
                value = first.get('value')
                entries.append(('' if value is None else str(value)).strip())

    return entries


def worksheet_payload(worksheets: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Build the classification request body from worksheet dictionaries.

    Skips the header row and hidden cells, stringifies values and drops
    rows left empty.
    """
    payload = []
    for sheet in worksheets:
        rows = []
        for row in (sheet.get('data') or [])[1:]:
            cells = [
                {'value': '' if cell.get('value') is None else str(cell.get('value'))}
                for cell in (row if isinstance(row, list) else [])
                if cell and not cell.get('is_hidden')
            ]
            if cells:
                rows.append(cells)
        payload.append({'name': sheet.get('name'), 'data': rows})
    return payload


def build_prompt_values(entries: List[str], taxonomy: Dict[str, Any]) -> Dict[str, str]:
    return {
        'classifications': json.dumps(taxonomy, indent=2),
        'entries': '\n'.join(entries)
    }


def build_messages(entries: List[str], taxonomy: Dict[str, Any]) -> List[Dict[str, str]]:
    """Chat messages for a chat-completion style provider."""
    values = build_prompt_values(entries, taxonomy)
    return [
        {'role': 'system', 'content': SYSTEM_PROMPT.format(**values)},
        {'role': 'user', 'content': USER_PROMPT.format(**values)},
    ]


# ---------------------------------------------------------------------------
# Response side
# ---------------------------------------------------------------------------

def convert_to_rows(text: str) -> List[List[str]]:
    """Split provider text into rows on newlines and cells on commas."""
    return [[cell.strip() for cell in line.split(',')] for line in text.split('\n')]


def _normalize(name: str) -> str:
    name = re.sub(r'\s*,\s*', ', ', name.strip().lower())
    return re.sub(r'\s+', ' ', name)


def _children(node) -> List[str]:
    if isinstance(node, dict):
        return list(node.keys())
    if isinstance(node, list):
        return [item for item in node if isinstance(item, str)]
    return []


def _child(node, name: str):
    if isinstance(node, dict):
        return node.get(name)
    return None


def parse_classification_line(line: str, taxonomy: Optional[Dict[str, Any]] = None) -> List[str]:
    """
    Parse one answer line into four classification levels.

    Names can contain commas ("Property, plant and equipment"), so at each
    level the longest run of comma-separated parts that matches a known
    name wins. Once a level fails to match, the remaining parts are taken
    one per level and any surplus is folded into the tertiary level.
    """
    parts = [part.strip() for part in line.split(',')]
    result: List[str] = []
    pos = 0
    node = taxonomy

    while node is not None and pos < len(parts) and len(result) < len(CLASSIFICATION_LEVELS):
        known = {_normalize(name): name for name in _children(node)}
        match = None
        for end in range(len(parts), pos, -1):
            candidate = _normalize(', '.join(parts[pos:end]))
            if candidate in known:
                match = (known[candidate], end)
                break
        if match is None:
            break
        name, pos = match
        result.append(name)
        node = _child(node, name)

    remaining = parts[pos:]
    slots = len(CLASSIFICATION_LEVELS) - len(result)
    if slots > 0 and remaining:
        head, tail = remaining[:slots - 1], remaining[slots - 1:]
        result.extend(head)
        result.append(', '.join(part for part in tail if part))

    while len(result) < len(CLASSIFICATION_LEVELS):
        result.append('')

    return result


def parse_classifications(text: str, taxonomy: Optional[Dict[str, Any]] = None) -> List[List[str]]:
    """Parse the whole provider answer, skipping blank lines."""
    return [
        parse_classification_line(line, taxonomy)
        for line in text.strip().split('\n')
        if line.strip()
    ]


def validate_classifications(rows: List[List[str]], taxonomy: Dict[str, Any]) -> Dict[str, Any]:
    """
    Check every classification path against the taxonomy.

    A row is valid when account type, primary and secondary exist in the
    structure and the tertiary level is either blank or a known child.
    """
    report_rows = []
    valid = 0

    for index, row in enumerate(rows):
        node = taxonomy
        depth = 0
        for name in row:
            if not name or name not in _children(node):
                break
            depth += 1
            node = _child(node, name)

        tertiary_blank = len(row) < 4 or not row[3]
        is_valid = depth == 4 or (depth == 3 and tertiary_blank)
        if is_valid:
            valid += 1

        report_rows.append({
            'row': index,
            'classification': row,
            'matched_levels': depth,
            'valid': is_valid
        })

    invalid_rows = [r for r in report_rows if not r['valid']]

    return {
        'status': 'passed' if not invalid_rows else ('failed' if valid == 0 else 'partial'),
        'total': len(rows),
        'valid': valid,
        'invalid': len(invalid_rows),
        'invalid_rows': invalid_rows
    }


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

class OpenAIProvider:
    """Chat-completion provider using the OpenAI SDK."""

    name = 'openai'

    def __init__(self, api_key: Optional[str] = None, model: str = DEFAULT_MODEL,
                 temperature: float = DEFAULT_TEMPERATURE,
                 max_tokens: int = DEFAULT_MAX_TOKENS, client=None):
        if client is None:
            from openai import OpenAI
            client = OpenAI(api_key=api_key)
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    def complete(self, values: Dict[str, str]) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {'role': 'system', 'content': SYSTEM_PROMPT.format(**values)},
                {'role': 'user', 'content': USER_PROMPT.format(**values)},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens
        )
        content = response.choices[0].message.content
        if not content:
            raise ClassificationError('Empty response from OpenAI')
        return content.strip()


class PromptEngineProvider:
    """
    Templated prompt provider (JigsawStack prompt engine).

    The prompt is sent as a template with ``{classifications}`` and
    ``{entries}`` placeholders plus their input values.
    """

    name = 'prompt_engine'

    def __init__(self, api_key: Optional[str], url: str = DEFAULT_PROMPT_ENGINE_URL,
                 timeout: int = 120, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def complete(self, values: Dict[str, str]) -> str:
        # The engine fills the placeholders; only the str.format escapes are undone
        template = f"{SYSTEM_PROMPT}\n\n{USER_PROMPT}".replace('{{', '{').replace('}}', '}')
        payload = {
            'prompt': template,
            'inputs': [{'key': key, 'optional': False} for key in values],
            'input_values': values,
            'return_prompt': 'Return only CSV lines: <account type>, <primary>, <secondary>, <tertiary>'
        }
        headers = {'x-api-key': self.api_key or '', 'Content-Type': 'application/json'}

        try:
            response = self.session.post(self.url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Prompt engine request failed: {e}")
            raise ClassificationError(f"Prompt engine request failed: {e}") from e
        except ValueError as e:
            raise ClassificationError('Prompt engine returned invalid JSON') from e

        if not body.get('success', True):
            raise ClassificationError(f"Prompt engine error: {body.get('message') or body}")

        result = body.get('result')
        if isinstance(result, list):
            result = '\n'.join(', '.join(map(str, r)) if isinstance(r, list) else str(r) for r in result)
        if not isinstance(result, str) or not result.strip():
            raise ClassificationError('Empty response from prompt engine')

        return result.strip()


class SampleProvider:
    """Returns the canned sample classification without calling out."""

    name = 'sample'

    def complete(self, values: Dict[str, str]) -> str:
        return SAMPLE_RESPONSE


def create_provider(name: str, **options):
    """
    Build a provider by name.

    Args:
        name: 'openai', 'prompt_engine' or 'sample'
        **options: Keyword arguments for the provider class
    """
    providers: Dict[str, Callable] = {
        'openai': OpenAIProvider,
        'prompt_engine': PromptEngineProvider,
        'sample': SampleProvider,
    }
    if name not in providers:
        raise ValueError(f"Unknown classifier provider: {name}")
    return providers[name](**options)


class ClassificationService:
    """
    Framework-agnostic classification service.

    Wraps a provider and the taxonomy; every provider failure surfaces as
    ClassificationError.
    """

    def __init__(self, provider, taxonomy: Dict[str, Any]):
        self.provider = provider
        self.taxonomy = taxonomy

    def classify_text(self, entries: List[str]) -> str:
        """Raw provider answer for a list of account descriptions."""
        if not entries:
            raise ClassificationError('No entries to classify')

        logger.info(f"Classifying {len(entries)} entries with {getattr(self.provider, 'name', 'provider')}")
        logger.debug(f"Entries: {entries}")

        try:
            text = self.provider.complete(build_prompt_values(entries, self.taxonomy))
        except ClassificationError:
            raise
        except Exception as e:
            logger.error(f"Classification provider failed: {e}", exc_info=True)
            raise ClassificationError(f"Classification provider failed: {e}") from e

        logger.debug(f"Provider response: {text}")
        return text.strip()

    def classify_entries(self, entries: List[str]) -> List[List[str]]:
        """Classify descriptions into ``[account type, primary, secondary, tertiary]`` rows."""
        rows = parse_classifications(self.classify_text(entries), self.taxonomy)
        if not rows:
            raise ClassificationError('Invalid response from classification provider')
        if len(rows) != len(entries):
            logger.warning(f"Provider returned {len(rows)} classifications for {len(entries)} entries")
        return rows

    def classify_sheets(self, sheets: Any) -> List[List[str]]:
        return self.classify_entries(extract_entries(sheets))

    def validate(self, rows: List[List[str]]) -> Dict[str, Any]:
        return validate_classifications(rows, self.taxonomy)
