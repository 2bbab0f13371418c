from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .ingestion import DocumentSink


@dataclass(slots=True)
class SampleDocument:
    filename: str
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


IRA_TEXT = """# IRA Contribution Limits and Rules

## Traditional and Roth IRA Contribution Limits 2024
The contribution limit for both Traditional and Roth IRAs is $7,000 for 2024.

### Catch-up Contributions
Individuals age 50 and older can contribute an additional $1,000 in catch-up contributions, bringing their total to $8,000.

### Roth IRA Income Limits
- Single filers: Phase-out begins at $138,000, ends at $153,000
- Married filing jointly: Phase-out begins at $218,000, ends at $228,000

### Traditional IRA Deductibility
Deduction limits apply if you are covered by a workplace retirement plan:
- Single: Phase-out $77,000 - $87,000
- Married filing jointly: Phase-out $123,000 - $143,000
"""

K401_TEXT = """# 401(k) Plan Rules and Limits

## Employee Contribution Limits 2024
- Standard contribution limit: $23,000
- Catch-up contribution (age 50+): Additional $7,500
- Total employee maximum: $30,500

## Employer Contributions and Limits
Total contributions (employee + employer) cannot exceed the annual additions limit.

| Age group | Employee limit | Total limit |
| --- | --- | --- |
| Under 50 | $23,000 | $69,000 |
| 50 and over | $30,500 | $76,500 |

### Vesting and Withdrawal Rules
- Employer contributions may have vesting schedules
- Early withdrawals before age 59 1/2 incur a 10% penalty
- Required minimum distributions begin at age 73

### Employer Match Example
Match = 50% x salary deferral up to 6% of pay
Maximum match = $120,000 x 3% = $3,600
"""

DEDUCTIONS_TEXT = """# Tax Deductions for Different Filing Statuses

## Standard Deduction 2024
- Single: $14,600
- Married Filing Jointly: $29,200
- Married Filing Separately: $14,600
- Head of Household: $21,900

## State Tax Considerations
### High-Tax States (CA, NY, NJ)
- State and Local Tax (SALT) deduction capped at $10,000
- Consider tax-loss harvesting strategies
- Municipal bonds may be tax-advantaged

### No-Tax States (TX, FL, WA)
- No state income tax benefit for Traditional IRA contributions
- Roth IRA may be more attractive
"""

SAMPLE_DOCUMENTS: list[SampleDocument] = [
    SampleDocument(
        filename="irs-ira-contribution-limits-2024.md",
        text=IRA_TEXT,
        metadata={"document_id": "ira-comprehensive-2024", "source": "IRS", "category": "retirement", "year": 2024},
    ),
    SampleDocument(
        filename="irs-401k-plan-limits-2024.md",
        text=K401_TEXT,
        metadata={"document_id": "401k-comprehensive-2024", "source": "IRS", "category": "retirement", "year": 2024},
    ),
    SampleDocument(
        filename="irs-tax-deductions-filing-status-2024.md",
        text=DEDUCTIONS_TEXT,
        metadata={
            "document_id": "tax-deductions-filing-status-2024",
            "source": "IRS",
            "category": "taxes",
            "year": 2024,
        },
    ),
]


def load_sample_corpus(sink: DocumentSink) -> int:
    """Add every sample document to ``sink`` and return the passage count."""
    return sum(len(sink.add_document(doc.text, doc.metadata, replace=True)) for doc in SAMPLE_DOCUMENTS)


def save_sample_corpus(output_dir: str = "data/documents") -> list[Path]:
    """Write the sample documents as markdown files for directory ingestion."""
    root = Path(output_dir)
    root.mkdir(parents=True, exist_ok=True)
    written = []
    for doc in SAMPLE_DOCUMENTS:
        path = root / doc.filename
        path.write_text(doc.text, encoding="utf-8")
        written.append(path)
    return written
