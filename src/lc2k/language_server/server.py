"""LC-2K Language Server

Implements Language Server Protocol for LC-2K assembly support in VSCode.
"""

import re
from typing import Dict, List, Optional, Tuple

from lsprotocol.types import (
    TEXT_DOCUMENT_COMPLETION,
    TEXT_DOCUMENT_DIAGNOSTIC,
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_CLOSE,
    TEXT_DOCUMENT_DID_OPEN,
    TEXT_DOCUMENT_HOVER,
    CompletionItem,
    CompletionItemKind,
    CompletionList,
    CompletionOptions,
    CompletionParams,
    Diagnostic,
    DiagnosticOptions,
    DiagnosticSeverity,
    DidChangeTextDocumentParams,
    DidCloseTextDocumentParams,
    DidOpenTextDocumentParams,
    DocumentDiagnosticParams,
    FullDocumentDiagnosticReport,
    Hover,
    HoverParams,
    MarkupContent,
    MarkupKind,
    Position,
    Range,
    TextDocumentSyncKind,
)
from pygls.server import LanguageServer

from ..vm.exceptions import InvalidInstructionException
from ..vm.instruction import NUM_REGISTERS, OPCODES, decode_line, declared_label


DIAGNOSTIC_SOURCE = "lc2k"

# Operand positions holding registers and label references, per opcode
REGISTER_OPERANDS = {
    'add': (0, 1, 2),
    'nor': (0, 1, 2),
    'beq': (0, 1),
    'lw': (0, 1),
    'sw': (0, 1),
    'jalr': (0, 1),
}
LABEL_OPERANDS = {
    'beq': 2,
    'lw': 2,
    'sw': 2,
    '.fill': 0,
}

INSTRUCTION_DESCRIPTIONS = {
    'add': 'add A B D - reg D = reg A + reg B',
    'nor': 'nor A B D - reg D = ~(reg A | reg B)',
    'beq': 'beq A B T - if reg A == reg B, go to line T (a number or a label)',
    'lw': 'lw A B O - reg B = mem[reg A + O], O is a number or a label',
    'sw': 'sw A B O - mem[reg A + O] = reg B, O is a number or a label',
    'jalr': 'jalr A B - reg B = next line, then go to line reg A',
    'halt': 'halt - stop the program and print the registers',
    'noop': 'noop - do nothing',
    '.fill': '.fill V - this line holds V (a number, or the line of a label)',
}


def _line_range(line: int, text: str) -> Range:
    return Range(
        start=Position(line=line, character=0),
        end=Position(line=line, character=len(text))
    )


def _token_range(line: int, text: str, token: str, skip: int = 0) -> Range:
    """Range of the first occurrence of token after the label field."""
    start = text.find(token, skip)
    if start < 0:
        return _line_range(line, text)
    return Range(
        start=Position(line=line, character=start),
        end=Position(line=line, character=start + len(token))
    )


def collect_labels(lines: List[str]) -> Tuple[Dict[str, int], List[Tuple[str, int]]]:
    """Map labels to their first declaring line.

    Returns:
        The label table and the (label, line) pairs of later redeclarations
    """
    labels: Dict[str, int] = {}
    duplicates = []
    for line_num, text in enumerate(lines):
        label = declared_label(text)
        if label is None:
            continue
        if label in labels:
            duplicates.append((label, line_num))
        else:
            labels[label] = line_num
    return labels, duplicates


def collect_diagnostics(text: str) -> List[Diagnostic]:
    """Check a whole document.

    Reports lines that are not instructions, register operands outside
    reg 0 to reg 7, references to undeclared labels and labels declared
    more than once.
    """
    lines = re.split(r'\r?\n', text)
    labels, duplicates = collect_labels(lines)
    diagnostics = []

    for label, line_num in duplicates:
        diagnostics.append(Diagnostic(
            range=_token_range(line_num, lines[line_num], label),
            message=f"Label {label} already declared on line {labels[label] + 1}",
            severity=DiagnosticSeverity.Warning,
            source=DIAGNOSTIC_SOURCE
        ))

    for line_num, line_text in enumerate(lines):
        if not line_text.strip():
            continue

        try:
            instruction = decode_line(line_text, line_num)
        except InvalidInstructionException:
            diagnostics.append(Diagnostic(
                range=_line_range(line_num, line_text),
                message="Invalid instruction: there are only 8 instructions and .fill",
                severity=DiagnosticSeverity.Error,
                source=DIAGNOSTIC_SOURCE
            ))
            continue

        skip = len(instruction.label) if instruction.label else 0
        skip = line_text.find(instruction.opcode, skip) + len(instruction.opcode)

        for index in REGISTER_OPERANDS.get(instruction.opcode, ()):
            operand = instruction.operands[index]
            if not (isinstance(operand, int) and 0 <= operand < NUM_REGISTERS):
                diagnostics.append(Diagnostic(
                    range=_token_range(line_num, line_text, str(operand), skip),
                    message=f"Invalid register {operand}: only reg 0 to reg {NUM_REGISTERS - 1} exist",
                    severity=DiagnosticSeverity.Error,
                    source=DIAGNOSTIC_SOURCE
                ))

        index = LABEL_OPERANDS.get(instruction.opcode)
        if index is not None:
            operand = instruction.operands[index]
            if isinstance(operand, str) and operand not in labels:
                diagnostics.append(Diagnostic(
                    range=_token_range(line_num, line_text, operand, skip),
                    message=f"Label {operand} not found",
                    severity=DiagnosticSeverity.Error,
                    source=DIAGNOSTIC_SOURCE
                ))

    return diagnostics


def word_at(text: str, character: int) -> Optional[Tuple[str, int, int]]:
    """Return the token under the cursor with its start and end columns."""
    word_start = character
    word_end = character

    def is_word_char(c: str) -> bool:
        return c.isalnum() or c in '._'

    while word_start > 0 and is_word_char(text[word_start - 1]):
        word_start -= 1

    while word_end < len(text) and is_word_char(text[word_end]):
        word_end += 1

    if word_start == word_end:
        return None
    return text[word_start:word_end], word_start, word_end


def hover_text(text: str, line: int, character: int) -> Optional[Tuple[str, int, int]]:
    """Markdown for the opcode or label under the cursor."""
    lines = re.split(r'\r?\n', text)
    if line >= len(lines):
        return None

    found = word_at(lines[line], character)
    if found is None:
        return None
    word, start, end = found

    if word in INSTRUCTION_DESCRIPTIONS:
        return f"**{word}**\n\n{INSTRUCTION_DESCRIPTIONS[word]}", start, end

    labels, _ = collect_labels(lines)
    if word in labels:
        declaration = lines[labels[word]].strip()
        return f"**{word}** (label, line {labels[word] + 1})\n\n`{declaration}`", start, end
    return None


def completion_items(text: str) -> List[CompletionItem]:
    """Opcodes and the labels declared in the document."""
    items = []

    for opcode, (shape, count) in OPCODES.items():
        items.append(CompletionItem(
            label=opcode,
            kind=CompletionItemKind.Keyword,
            detail=f"{shape.value} instruction, {count} operand(s)",
            documentation=INSTRUCTION_DESCRIPTIONS[opcode]
        ))

    labels, _ = collect_labels(re.split(r'\r?\n', text))
    for label, line_num in labels.items():
        items.append(CompletionItem(
            label=label,
            kind=CompletionItemKind.Reference,
            detail=f"Label on line {line_num + 1}"
        ))

    return items


class LC2KLanguageServer(LanguageServer):
    """Language Server for LC-2K assembly."""

    def __init__(self):
        super().__init__("lc2k-language-server", "0.1.0",
                         text_document_sync_kind=TextDocumentSyncKind.Full)

        # Document cache
        self.documents: Dict[str, str] = {}

    def publish(self, uri: str) -> None:
        self.publish_diagnostics(uri, collect_diagnostics(self.documents.get(uri, "")))


lc2k_server = LC2KLanguageServer()


@lc2k_server.feature(TEXT_DOCUMENT_COMPLETION, CompletionOptions(trigger_characters=[" ", "\t"]))
async def completion(params: CompletionParams) -> CompletionList:
    """Provide completion items."""
    text = lc2k_server.documents.get(params.text_document.uri)
    if text is None:
        return CompletionList(is_incomplete=False, items=[])
    return CompletionList(is_incomplete=False, items=completion_items(text))


@lc2k_server.feature(TEXT_DOCUMENT_HOVER)
async def hover(params: HoverParams) -> Optional[Hover]:
    """Provide hover information."""
    text = lc2k_server.documents.get(params.text_document.uri)
    if text is None:
        return None

    position = params.position
    found = hover_text(text, position.line, position.character)
    if found is None:
        return None

    value, start, end = found
    return Hover(
        contents=MarkupContent(kind=MarkupKind.Markdown, value=value),
        range=Range(
            start=Position(line=position.line, character=start),
            end=Position(line=position.line, character=end)
        )
    )


@lc2k_server.feature(
    TEXT_DOCUMENT_DIAGNOSTIC,
    DiagnosticOptions(inter_file_dependencies=False, workspace_diagnostics=False)
)
async def diagnostics(params: DocumentDiagnosticParams) -> FullDocumentDiagnosticReport:
    """Provide diagnostics (errors, warnings)."""
    text = lc2k_server.documents.get(params.text_document.uri, "")
    return FullDocumentDiagnosticReport(kind="full", items=collect_diagnostics(text))


# Document synchronization
@lc2k_server.feature(TEXT_DOCUMENT_DID_OPEN)
async def did_open(params: DidOpenTextDocumentParams):
    """Handle document open event."""
    lc2k_server.documents[params.text_document.uri] = params.text_document.text
    lc2k_server.publish(params.text_document.uri)


@lc2k_server.feature(TEXT_DOCUMENT_DID_CHANGE)
async def did_change(params: DidChangeTextDocumentParams):
    """Handle document change event."""
    document_uri = params.text_document.uri

    # Full sync: the last change holds the whole document
    for change in params.content_changes:
        lc2k_server.documents[document_uri] = change.text
    lc2k_server.publish(document_uri)


@lc2k_server.feature(TEXT_DOCUMENT_DID_CLOSE)
async def did_close(params: DidCloseTextDocumentParams):
    """Handle document close event."""
    lc2k_server.documents.pop(params.text_document.uri, None)
    lc2k_server.publish_diagnostics(params.text_document.uri, [])
