"""
Extraction collaborator: sends receipts and the claim form to an LLM provider
with the audit policy prompt and returns its four-phase text response.
"""

import base64
import csv
import io
import os
import re
import zipfile
from enum import Enum
from typing import Callable, Dict, List, Optional

from .models import Attachment
from .policy import EXPENSE_CATEGORIES


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    AZURE_OPENAI = "azure-openai"


# Default (primary, fallback) models for each provider
DEFAULT_MODELS = {
    LLMProvider.ANTHROPIC: ("claude-3-5-sonnet-latest", "claude-3-5-haiku-latest"),
    LLMProvider.OPENAI: ("gpt-4o", "gpt-4o-mini"),
    LLMProvider.AZURE_OPENAI: ("gpt-4o", "gpt-4o-mini"),
}

MAX_TOKENS = 4096

AUDIT_POLICY_PROMPT = """
# ROLE:
You are the Reimbursement Auditor and Form Processor. Extract data from the
uploaded receipts and reimbursement form, apply the audit rules and produce
structured data blocks and the outcome email.

## PHASE 1: RECEIPT ANALYSIS & EXTRACTION
1. Status per receipt: "Receipt [Number]: Good" or "Receipt [Number]: With Issue - [reason]".
   Time is optional. Date is mandatory; a receipt without a date is "With Issue".
2. Receipt ID: the transaction/invoice/receipt number, else STORE-MMDD-AMOUNT.
   Client name / location: the house, address or young person named, else "N/A".
3. Detailed itemization, one row per line item:
| Receipt # | Store Name Date & Time | Product (Per Item) | Category | Item Amount | Grand Total |
| :--- | :--- | :--- | :--- | :--- | :--- |
| [1] | [Store] [dd/mm/yy HH:MM] | [Item Name] | [Category] | [Amt] | [Rcpt Total] |
   Categories: {categories}
4. Summary amount table:
| Receipt # | Store Name | Receipt ID | Grand Total |
|:---|:---|:---|:---|
| 1 | [Name] | [Receipt ID] | $[Amount] |
| **Total Amount** | | | **$[Sum]** |

## PHASE 2: DATA STANDARDIZATION (FORM PROCESSING)
Names as LAST NAME, FIRST NAME. Dates as mm/dd/yyyy. For each staff member:
```pgsql
-- PHASE 1 BLOCK: [Staff Name]
Client name / Location: [Client Name/Location]
[Last Name, First Name]
Approved by: [Approver Name]
Type of expense: [Category]
[Date mm/dd/yyyy]
$[Total Amount on Form]
```

## PHASE 3: THE AUDIT
Report the form total (Phase 2), the receipt total (Phase 1) and then apply:
RULE 1 (Integrity): receipt > form -> pay the form amount; form > receipt ->
  pay the receipt amount; equal -> pay the matched amount. Only receipts that
  are missing, illegible or unrelated are a Discrepancy (Email Type A).
RULE 2 (Duplicate): flag a store, date and amount already processed this session.
RULE 3 (Over threshold): amount from Rule 1 over $300 -> Email Type C.
RULE 4 (Age): receipt more than 30 days old -> Email Type C.
RULE 5 (All good): otherwise Email Type B.

## PHASE 4: EMAIL
Output ONLY the email for the audit result. No subject line, no signature.
Every email includes these labelled lines:
**Staff Member:** [Last Name, First Name]
**Client / Location:** [Client Name/Location]
**Amount:** $[Amount Determined in Rule 1]

EMAIL TYPE A (Discrepancy): tell the claimant a discrepancy was found, show
the amount on the form against the amount on the receipt, explain the issue,
include the detailed itemization table and ask them to resubmit.

EMAIL TYPE B (Success): confirm the request was processed today and add:
**Receipt ID:** [Receipt ID]
**NAB Reference:** PENDING
then the detailed itemization table, **TOTAL AMOUNT: $[Amount]** in bold and
the summary amount table at the bottom.

EMAIL TYPE C (Escalation): a polite email to {contact} (Manager) asking for
approval, naming the reason (over $300 or over 30 days), with the receipt
summary and Client/Location.

# OUTPUT FORMAT
Wrap each phase in its markers:
<<<PHASE_1_START>>> ... <<<PHASE_1_END>>>
<<<PHASE_2_START>>> ... <<<PHASE_2_END>>>
<<<PHASE_3_START>>> ... <<<PHASE_3_END>>>
<<<PHASE_4_START>>> ... <<<PHASE_4_END>>>
Inside each section, use standard Markdown.
"""

SPREADSHEET_MIMES = ("spreadsheet", "excel", "sheet")
WORD_MIMES = ("word", "officedocument.wordprocessing")


class ExtractionError(Exception):
    """The extraction collaborator could not produce a response."""


# Lazy import clients
_clients = {}


def _get_anthropic_client():
    """Get or create Anthropic client (lazy initialization)."""
    if "anthropic" not in _clients:
        import anthropic
        _clients["anthropic"] = anthropic.Anthropic()  # Uses ANTHROPIC_API_KEY env var
    return _clients["anthropic"]


def _get_openai_client():
    """Get or create OpenAI client (lazy initialization)."""
    if "openai" not in _clients:
        import openai
        _clients["openai"] = openai.OpenAI()  # Uses OPENAI_API_KEY env var
    return _clients["openai"]


def _get_azure_openai_client():
    """Get or create Azure OpenAI client (lazy initialization)."""
    if "azure" not in _clients:
        import openai
        _clients["azure"] = openai.AzureOpenAI(
            api_key=os.getenv("AZURE_OPENAI_API_KEY"),
            api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
            azure_endpoint=os.getenv("AZURE_OPENAI_ENDPOINT")
        )
    return _clients["azure"]


# --------------- Attachment normalization ---------------

def spreadsheet_to_text(att: Attachment) -> str:
    """Flatten every sheet of a workbook to CSV text."""
    from openpyxl import load_workbook

    name = att.name or "Unknown File"
    try:
        wb = load_workbook(io.BytesIO(att.data), read_only=True, data_only=True)
    except Exception as e:
        return f"[FAILED TO PARSE SPREADSHEET {name}: {e}]"

    parts = [f"--- SPREADSHEET CONTENT ({name}) ---"]
    for sheet in wb.worksheets:
        buf = io.StringIO()
        writer = csv.writer(buf)
        for row in sheet.iter_rows(values_only=True):
            writer.writerow(["" if v is None else v for v in row])
        parts.append(f"[SHEET: {sheet.title}]\n{buf.getvalue()}")
    wb.close()
    return "\n".join(parts)


def docx_to_parts(att: Attachment):
    """Pull body text and embedded images out of a .docx archive."""
    name = att.name or "DOCX"
    try:
        archive = zipfile.ZipFile(io.BytesIO(att.data))
    except zipfile.BadZipFile:
        return f"[DOCX PARSE ERROR: {name}]", []

    with archive:
        images = []
        for path in archive.namelist():
            if path.startswith("word/media/"):
                ext = path.rsplit(".", 1)[-1].lower()
                mime = {"png": "image/png", "gif": "image/gif"}.get(ext, "image/jpeg")
                images.append(Attachment(mime, archive.read(path), f"Embedded Image from {name}"))
        text = ""
        if "word/document.xml" in archive.namelist():
            xml = archive.read("word/document.xml").decode("utf-8", errors="replace")
            body = re.sub(r"\s+", " ", re.sub(r"<[^>]+>", " ", xml)).strip()
            text = f"--- DOCX TEXT CONTENT ({name}) ---\n{body}"
    return text, images


def normalize_attachment(att: Attachment):
    """
    Split an upload into (text, binary attachments).

    Spreadsheets, CSV and Word documents become text (Word images are kept as
    binaries); images and PDFs pass through unchanged.
    """
    mime = att.mime_type.lower()
    if mime.startswith("text/") or "csv" in mime:
        return att.data.decode("utf-8", errors="replace"), []
    if any(m in mime for m in SPREADSHEET_MIMES):
        return spreadsheet_to_text(att), []
    if any(m in mime for m in WORD_MIMES) or mime == "application/msword":
        return docx_to_parts(att)
    return "", [att]


def build_parts(receipts: List[Attachment], form: Optional[Attachment]) -> List[Dict]:
    """
    Assemble the provider-neutral message parts: {"text": ...} or
    {"attachment": Attachment}.
    """
    parts: List[Dict] = []
    receipt_binaries: List[Attachment] = []

    for att in receipts:
        text, binaries = normalize_attachment(att)
        if text:
            parts.append({"text": text})
        if binaries and text:
            parts.append({"text": f"[Images extracted from {att.name or 'document'}]"})
        receipt_binaries.extend(binaries)

    if form is not None:
        text, binaries = normalize_attachment(form)
        parts.append({"text": "Here is the Reimbursement Form:"})
        if text:
            parts.append({"text": text})
        parts.extend({"attachment": b} for b in binaries)
    else:
        parts.append({"text": "[NO FORM PROVIDED - extract the claim details from the receipts]"})

    if receipt_binaries:
        parts.append({"text": "Here are the Receipt Images:"})
        parts.extend({"attachment": b} for b in receipt_binaries)
    elif receipts:
        parts.append({"text": "[NOTE: Documents were provided but no direct images were found. "
                              "Analyze the extracted text above.]"})
    else:
        parts.append({"text": "[NO RECEIPT IMAGES PROVIDED]"})
    return parts


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _openai_content(parts: List[Dict]) -> List[Dict]:
    content = []
    for part in parts:
        if "text" in part:
            content.append({"type": "text", "text": part["text"]})
            continue
        att = part["attachment"]
        data_url = f"data:{att.mime_type};base64,{_b64(att.data)}"
        if att.mime_type == "application/pdf":
            content.append({"type": "file",
                            "file": {"filename": att.name or "receipt.pdf", "file_data": data_url}})
        else:
            content.append({"type": "image_url", "image_url": {"url": data_url}})
    return content


def _anthropic_content(parts: List[Dict]) -> List[Dict]:
    content = []
    for part in parts:
        if "text" in part:
            content.append({"type": "text", "text": part["text"]})
            continue
        att = part["attachment"]
        block_type = "document" if att.mime_type == "application/pdf" else "image"
        content.append({"type": block_type,
                        "source": {"type": "base64", "media_type": att.mime_type,
                                   "data": _b64(att.data)}})
    return content


# --------------- Provider calls ---------------

def _call_anthropic(system: str, parts: List[Dict], model: str) -> str:
    """Call Anthropic API."""
    client = _get_anthropic_client()
    response = client.messages.create(
        model=model,
        max_tokens=MAX_TOKENS,
        temperature=0.1,
        system=system,
        messages=[{"role": "user", "content": _anthropic_content(parts)}]
    )
    return response.content[0].text.strip()


def _call_openai_compatible(client, system: str, parts: List[Dict], model: str) -> str:
    response = client.chat.completions.create(
        model=model,
        messages=[{"role": "system", "content": system},
                  {"role": "user", "content": _openai_content(parts)}],
        max_tokens=MAX_TOKENS,
        temperature=0.1,
    )
    return (response.choices[0].message.content or "").strip()


def _call_openai(system: str, parts: List[Dict], model: str) -> str:
    """Call OpenAI API."""
    return _call_openai_compatible(_get_openai_client(), system, parts, model)


def _call_azure_openai(system: str, parts: List[Dict], model: str) -> str:
    """Call Azure OpenAI API."""
    return _call_openai_compatible(_get_azure_openai_client(), system, parts, model)


PROVIDER_CALLS: Dict[LLMProvider, Callable[[str, List[Dict], str], str]] = {
    LLMProvider.ANTHROPIC: _call_anthropic,
    LLMProvider.OPENAI: _call_openai,
    LLMProvider.AZURE_OPENAI: _call_azure_openai,
}


def analyze_reimbursement(receipts: List[Attachment],
                          form: Optional[Attachment] = None,
                          provider: str = "openai",
                          model: Optional[str] = None,
                          fallback_model: Optional[str] = None,
                          categories: Optional[List[str]] = None,
                          escalation_contact: str = "Julian",
                          verbose: bool = False) -> str:
    """
    Run the audit prompt over the uploaded documents.

    Args:
        receipts: Receipt uploads (images, PDFs, spreadsheets, Word documents)
        form: Optional reimbursement form upload
        provider: LLM provider to use ("openai", "anthropic", "azure-openai") - default: openai
        model: Primary model (uses provider default if not specified)
        fallback_model: Model tried once if the primary call fails
        categories: Expense categories offered to the model
        escalation_contact: Manager named in escalation emails
        verbose: Print model selection and fallback attempts

    Returns:
        The raw response text, structured with the four phase markers

    Raises:
        ExtractionError: unsupported provider, or both models failed / returned nothing
    """
    try:
        provider = LLMProvider(provider)
    except ValueError:
        raise ExtractionError(f"Unsupported LLM provider: {provider}") from None

    primary_default, fallback_default = DEFAULT_MODELS[provider]
    model = model or primary_default
    fallback_model = fallback_model or fallback_default
    system = AUDIT_POLICY_PROMPT.format(categories=", ".join(categories or EXPENSE_CATEGORIES),
                                        contact=escalation_contact)
    try:
        parts = build_parts(receipts, form)
    except Exception as e:
        raise ExtractionError(f"Could not read the uploaded files: {e}") from e
    call = PROVIDER_CALLS[provider]

    try:
        if verbose:
            print(f"  [DEBUG] Requesting audit with model: {model}")
        text = call(system, parts, model)
    except Exception as primary_error:
        print(f"[WARN] Primary model {model} failed: {primary_error}")
        if not fallback_model or fallback_model == model:
            raise ExtractionError(f"Model generation failed: {primary_error}") from primary_error
        print(f"[INFO] Attempting fallback to: {fallback_model}")
        try:
            text = call(system, parts, fallback_model)
        except Exception as fallback_error:
            raise ExtractionError(
                f"Model generation failed. Primary: {primary_error}. Fallback: {fallback_error}"
            ) from fallback_error

    if not text:
        raise ExtractionError("No response from the extraction model")
    return text
