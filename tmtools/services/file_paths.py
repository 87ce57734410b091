"""Fixed report and output locations under a base directory."""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict


@dataclass(frozen=True)
class FilePaths:
    """All paths the pipeline reads and writes for one migration."""
    base_dir: Path

    # Reports
    analysis_report: Path
    extraction_report: Path
    transformation_report: Path
    import_report: Path
    deployment_report: Path
    load_report: Path
    cleanup_report: Path

    # Extraction output
    extraction_dir: Path
    extracted_data_dir: Path
    extracted_metadata_dir: Path

    # Transformation output
    transformation_dir: Path
    transformed_data_dir: Path
    transformed_metadata_dir: Path
    tm2_main_deployment_dir: Path
    tm2_sharing_rules_deployment_dir: Path
    tm1_sharing_rules_cleanup_dir: Path

    # Load output
    load_data_dir: Path

    @classmethod
    def for_base_dir(cls, base_dir) -> "FilePaths":
        base = Path(base_dir)
        extraction = base / "tm1-extraction"
        transformation = base / "tm1-transformation"
        transformed_metadata = transformation / "transformed-metadata"
        return cls(
            base_dir=base,
            analysis_report=base / "tm1-analysis.json",
            extraction_report=base / "tm1-extraction.json",
            transformation_report=base / "tm1-transformation.json",
            import_report=base / "tm2-import.json",
            deployment_report=base / "tm2-deployment.json",
            load_report=base / "tm2-dataload.json",
            cleanup_report=base / "tm1-cleanup.json",
            extraction_dir=extraction,
            extracted_data_dir=extraction / "extracted-data",
            extracted_metadata_dir=extraction / "extracted-metadata",
            transformation_dir=transformation,
            transformed_data_dir=transformation / "transformed-data",
            transformed_metadata_dir=transformed_metadata,
            tm2_main_deployment_dir=transformed_metadata / "tm2-main-deployment",
            tm2_sharing_rules_deployment_dir=transformed_metadata / "tm2-sharing-rules-deployment",
            tm1_sharing_rules_cleanup_dir=transformed_metadata / "tm1-sharing-rules-cleanup",
            load_data_dir=base / "tm2-dataload" / "load-data",
        )

    def reports(self) -> Dict[str, Path]:
        """Get stage name -> report path, in pipeline order."""
        return {
            "analyze": self.analysis_report,
            "extract": self.extraction_report,
            "transform": self.transformation_report,
            "import": self.import_report,
            "deploy": self.deployment_report,
            "load": self.load_report,
            "clean": self.cleanup_report,
        }

    def relative(self, path: Path) -> str:
        """Express a path relative to the base directory (POSIX separators)."""
        return Path(path).relative_to(self.base_dir).as_posix()
