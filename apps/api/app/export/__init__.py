from app.export.render import (
    CSV_MEDIA_TYPE,
    XLSX_MEDIA_TYPE,
    render_all_csv,
    render_all_workbook,
    render_single_csv,
    render_single_workbook,
)

__all__ = [
    "XLSX_MEDIA_TYPE",
    "CSV_MEDIA_TYPE",
    "render_single_workbook",
    "render_all_workbook",
    "render_single_csv",
    "render_all_csv",
]
