"""Binning analysis charts.

Plots the binning error against bin size so the plateau (or its absence)
can be checked by eye. Single Responsibility: transform a BinningAnalysis
into a figure; the numbers come from analysis.binning.
"""

import logging
from typing import Any, Optional

import matplotlib.pyplot as plt
import numpy as np

from mcobservable.analysis.binning import binning_analysis, select_binsize
from mcobservable.config import BinningConfig
from mcobservable.data_types import BinningAnalysis

logger = logging.getLogger(__name__)


class BinningChart:
    """Generates binning analysis charts.

    Args:
        analysis: Errors over a range of bin sizes
        title: Figure title (typically the observable name)
        config: Tunables used to mark the selected bin size
    """

    def __init__(
        self,
        analysis: BinningAnalysis,
        title: str = "",
        config: Optional[BinningConfig] = None,
    ) -> None:
        self.analysis = analysis
        self.title = title
        self.config = config or BinningConfig()

    @classmethod
    def from_series(
        cls,
        series: Any,
        title: str = "",
        config: Optional[BinningConfig] = None,
    ) -> "BinningChart":
        """Build a chart from a raw time series."""
        return cls(binning_analysis(series, config=config), title, config)

    def create_figure(self) -> plt.Figure:
        """Draw error vs. bin size, one line per component (at most 8 shown)."""
        errors = self.analysis.errors.reshape(len(self.analysis), -1)
        binsizes = self.analysis.binsizes
        index, converged = select_binsize(self.analysis, self.config)

        fig, ax = plt.subplots(figsize=(6.5, 4.0))
        for component in range(min(errors.shape[1], 8)):
            label = None if errors.shape[1] == 1 else f"component {component}"
            ax.plot(binsizes, errors[:, component], marker='o', markersize=3, label=label)

        marker_label = f"selected b={binsizes[index]}" if converged else "no plateau"
        ax.axvline(binsizes[index], color='gray', linestyle='--', linewidth=1, label=marker_label)

        ax.set_xscale('log', base=2)
        ax.set_xlabel('Bin size')
        ax.set_ylabel('Error of the mean')
        ax.set_ylim(bottom=0.0, top=max(float(np.max(errors)) * 1.15, 1e-12))
        if self.title:
            ax.set_title(self.title)
        ax.grid(True, alpha=0.3)
        ax.legend(fontsize=8)
        fig.tight_layout()
        return fig

    def generate_to_file(self, file_path: str) -> bool:
        """Render the chart to an image file without a GUI.

        Uses the 'Agg' backend so it is safe on headless cluster nodes.

        Returns:
            True if successful, False otherwise
        """
        original_backend = plt.get_backend()
        fig = None

        try:
            plt.switch_backend('Agg')
            fig = self.create_figure()
            fig.savefig(file_path, dpi=150, bbox_inches='tight')
            logger.info(f"Binning chart written to {file_path}")
            return True

        except (OSError, ValueError) as e:
            logger.warning(f"Failed to generate binning chart: {e}")
            return False
        finally:
            if fig is not None:
                plt.close(fig)
            try:
                plt.switch_backend(original_backend)
            except (ImportError, RuntimeError):
                pass  # Interactive backends may be unavailable headless
