from ..models import AnalysisState, Progress, RunSnapshot

class Metrics:
    @staticmethod
    def progress(snapshot: RunSnapshot) -> Progress:
        analyzed = sum(1 for item in snapshot.items if item.state == AnalysisState.COMPLETED)
        failed = sum(1 for item in snapshot.items if item.state == AnalysisState.FAILED)
        total = len(snapshot.items)
        percent = round((analyzed + failed) / total * 100, 1) if total else 0.0
        return Progress(analyzed=analyzed, failed=failed, total=total, percent=percent)
