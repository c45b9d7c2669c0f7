import io

import pandas as pd

from app.credit_estimate_engine import estimate_credit
from app.expense_ledger import ExpenseCategory, ExpenseLedger, CONTRACT_QRE_RATE, entry_qualified_amount
from app.qre_engine import summarize_ledger

# sheet name, columns (header -> entry attribute), qualified amount header
SHEET_LAYOUT = {
    ExpenseCategory.WAGES: (
        "Wages",
        [("Employee Name", "employee_name"), ("Role", "role"),
         ("Annual Salary", "annual_salary"), ("R&D %", "rd_percentage")],
        "Qualified Wages",
    ),
    ExpenseCategory.CONTRACTORS: (
        "Contractors",
        [("Contractor Name", "contractor_name"), ("Description", "description"),
         ("Amount", "amount")],
        f"QRE ({CONTRACT_QRE_RATE:.0%})",
    ),
    ExpenseCategory.SUPPLIES: (
        "Supplies",
        [("Supply Type", "supply_type"), ("Amount", "amount"), ("R&D %", "rd_percentage")],
        "Qualified Supplies",
    ),
    ExpenseCategory.CLOUD_SOFTWARE: (
        "Cloud & Software",
        [("Service", "service_name"), ("Monthly Cost", "monthly_cost"), ("R&D %", "rd_percentage")],
        "Annual Qualified Amount",
    ),
}

CURRENCY_COLUMNS = {"Annual Salary", "Amount", "Monthly Cost"}


def generate_qre_workbook(ledger: ExpenseLedger, additional_years: int = 0):
    """
    Builds the QRE workbook for a customer's expense ledger.

    Sheets: Summary (category totals, federal credit estimate and price), then
    one sheet per expense category with every entry and its qualified amount.

    Args:
        ledger: The customer's expense ledger.
        additional_years: Extra filing years included in the quoted price.

    Returns:
        BytesIO object containing the Excel file.
    """
    summary = summarize_ledger(ledger)
    estimate = estimate_credit(summary, additional_years=additional_years)

    output = io.BytesIO()
    writer = pd.ExcelWriter(output, engine='xlsxwriter')
    workbook = writer.book

    header_fmt = workbook.add_format({
        'bold': True,
        'bg_color': '#D3D3D3',
        'border': 1,
        'align': 'center',
        'valign': 'vcenter'
    })
    currency_fmt = workbook.add_format({'num_format': '$#,##0.00'})
    bold_currency_fmt = workbook.add_format({'bold': True, 'num_format': '$#,##0.00'})
    bold_fmt = workbook.add_format({'bold': True})

    # --- 1. Summary Sheet ---
    summary_rows = [
        ('Wage QREs', round(summary.wages_total, 2)),
        (f'Contractor QREs ({CONTRACT_QRE_RATE:.0%})', round(summary.contractors_total, 2)),
        ('Supply QREs', round(summary.supplies_total, 2)),
        ('Cloud & Software QREs', round(summary.cloud_software_total, 2)),
        ('Total QREs', round(summary.grand_total, 2)),
        (f'Estimated Federal Credit ({estimate.rate:.1%})', round(estimate.federal_credit, 2)),
        (f'Service Price ({estimate.tier.name})', estimate.price),
    ]
    summary_df = pd.DataFrame(summary_rows, columns=['Category', 'Amount'])
    summary_df.to_excel(writer, sheet_name='Summary', index=False)

    worksheet = writer.sheets['Summary']
    worksheet.write_row('A1', list(summary_df.columns), header_fmt)
    worksheet.set_column('A:A', 38)
    worksheet.set_column('B:B', 20, currency_fmt)
    # Bold the grand total row (row 6 in Excel, index 5 counting the header)
    worksheet.write(5, 0, 'Total QREs', bold_fmt)
    worksheet.write_number(5, 1, round(summary.grand_total, 2), bold_currency_fmt)

    # --- 2. One sheet per category ---
    for category in ExpenseCategory:
        sheet_name, columns, qualified_header = SHEET_LAYOUT[category]
        headers = [h for h, _ in columns] + [qualified_header]

        rows = []
        for entry in ledger.entries(category):
            row = [getattr(entry, attr) for _, attr in columns]
            row.append(round(entry_qualified_amount(category, entry), 2))
            rows.append(row)

        df = pd.DataFrame(rows, columns=headers)
        df.to_excel(writer, sheet_name=sheet_name, index=False)

        worksheet = writer.sheets[sheet_name]
        for col_num, value in enumerate(headers):
            worksheet.write(0, col_num, value, header_fmt)
            width = 28 if col_num == 0 else 18
            fmt = currency_fmt if value in CURRENCY_COLUMNS or value == qualified_header else None
            worksheet.set_column(col_num, col_num, width, fmt)

        total_row = len(rows) + 1
        worksheet.write(total_row, 0, 'Total', bold_fmt)
        worksheet.write_number(total_row, len(headers) - 1, round(summary.category_total(category), 2), bold_currency_fmt)

    writer.close()
    output.seek(0)
    return output
