"""Preprocessing core for nowcasting delay-censored count data."""

from .completion import CompletenessPartition, classify_completeness, partition_rows
from .convolution import (
    ConvolutionBlock,
    convolution_blocks,
    convolution_matrix,
    delay_convolution,
    discretised_pmf,
    stack_blocks,
    validate_pmf,
)
from .design import (
    CategoricalEffect,
    DesignMatrix,
    FixedEffect,
    RandomWalkEffect,
    SparseDesignMatrix,
    build_design_matrix,
    extract_sparse_matrix,
)
from .errors import (
    IncompleteGroupKey,
    InvalidDelay,
    InvalidDelayDistribution,
    NonContiguousDateRange,
    PreprocessError,
)
from .lookup import MISSING_CELL, check_reference_lookup, gather_reference_panel, reference_by_report
from .metadata import add_date_features, metadata_delay, metadata_reference, metadata_report
from .preprocess import (
    ModuleDesign,
    PreprocessConfig,
    PreprocessedData,
    build_module_designs,
    input_fingerprint,
    run_preprocess,
)
from .triangle import ReportingTriangle, Truncation, build_reporting_triangle

__all__ = [
    "PreprocessConfig",
    "PreprocessedData",
    "run_preprocess",
    "build_module_designs",
    "input_fingerprint",
    "ModuleDesign",
    "ReportingTriangle",
    "Truncation",
    "build_reporting_triangle",
    "CompletenessPartition",
    "classify_completeness",
    "partition_rows",
    "reference_by_report",
    "gather_reference_panel",
    "check_reference_lookup",
    "MISSING_CELL",
    "add_date_features",
    "metadata_reference",
    "metadata_report",
    "metadata_delay",
    "validate_pmf",
    "delay_convolution",
    "ConvolutionBlock",
    "convolution_blocks",
    "stack_blocks",
    "convolution_matrix",
    "discretised_pmf",
    "FixedEffect",
    "CategoricalEffect",
    "RandomWalkEffect",
    "DesignMatrix",
    "SparseDesignMatrix",
    "build_design_matrix",
    "extract_sparse_matrix",
    "PreprocessError",
    "InvalidDelay",
    "IncompleteGroupKey",
    "NonContiguousDateRange",
    "InvalidDelayDistribution",
]
