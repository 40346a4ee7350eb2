"""
Workbook side of the validation pipeline.

- io: openpyxl read/write, Erreurs sheet, data URLs
- extraction: rows to AnalyzableItems
- merge: AnalysisResults back into rows
- pipeline: WorkbookPipeline, the job orchestrator
"""
