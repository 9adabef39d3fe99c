"""Export artifacts and analysis reports for collected performance data."""

from .analysis import (
    PerformanceAnalysisReport,
    generate_detailed_analysis,
    generate_visualization_data,
)
from .exporter import ExportOptions, ExportResult, PerformanceDataExportManager

__all__ = [
    "PerformanceAnalysisReport",
    "generate_detailed_analysis",
    "generate_visualization_data",
    "ExportOptions",
    "ExportResult",
    "PerformanceDataExportManager",
]
