"""SegCall: normal vs. copy-number-event calls for modeled genomic segments.

Segments come with copy-ratio and minor-allele-fraction posteriors from an
upstream modeling step (GATK ModelSegments). SegCall samples those
posteriors, clusters the samples with Gaussian mixtures, finds the peak of
normal (copy-number 2, balanced) segments and labels every segment.

Most users should use the CLI:

    segcall call --input tumor.modelFinal.seg --output results/ --output-prefix tumor

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
