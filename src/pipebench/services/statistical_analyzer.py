"""Statistical analysis of benchmark measurements.

Provides descriptive statistics, two-sample significance testing (Welch's
t-test, Mann-Whitney U, Kolmogorov-Smirnov), confidence intervals, effect
size and regression detection.

Degenerate input (fewer than two samples, zero variance, zero mean) always
resolves to a neutral, non-significant result. No NaN or infinite value is
ever returned.
"""

import math
import statistics
from collections import Counter
from collections.abc import Sequence

from scipy import stats

from pipebench.domain.models import (
    ComparisonResult,
    ConfidenceInterval,
    DescriptiveStats,
    EffectMagnitude,
    EffectSize,
    Measurement,
    MeasurementSummary,
    PerformanceDifference,
    RegressionReport,
    SignificanceTest,
)
from pipebench.infrastructure.logger import get_logger
from pipebench.services.recommendations import (
    NO_REGRESSION,
    REGRESSION_TIERS,
    UNCONFIRMED_DEGRADATION,
    classify,
)

logger = get_logger(__name__)

MIN_SAMPLE_SIZE = 3
MAX_RECOMMENDED_SAMPLE_SIZE = 100
LARGE_SAMPLE_SIZE = 30
COHENS_D_CAP = 10.0
PERCENTILES = (10, 25, 50, 75, 90, 95, 99)


def _finite(value: float, default: float = 0.0) -> float:
    """Replace NaN/Infinity with a default."""
    value = float(value)
    return value if math.isfinite(value) else default


def percentile(sorted_values: Sequence[float], pct: float) -> float:
    """Percentile by linear interpolation between closest ranks."""
    if not sorted_values:
        return 0.0

    index = (pct / 100.0) * (len(sorted_values) - 1)
    lower = math.floor(index)
    upper = math.ceil(index)
    if lower == upper:
        return float(sorted_values[lower])

    weight = index - lower
    return sorted_values[lower] * (1 - weight) + sorted_values[upper] * weight


def coefficient_of_variation(values: Sequence[float]) -> float:
    """Standard deviation as a percentage of the mean (0.0 when the mean is 0)."""
    if len(values) < 2:
        return 0.0
    mean = statistics.fmean(values)
    if mean == 0:
        return 0.0
    return _finite(statistics.stdev(values) / abs(mean) * 100)


def skewness(values: Sequence[float]) -> float:
    """Adjusted Fisher-Pearson sample skewness."""
    n = len(values)
    if n < 3:
        return 0.0
    mean = statistics.fmean(values)
    std_dev = statistics.stdev(values)
    if std_dev == 0:
        return 0.0
    total = sum(((x - mean) / std_dev) ** 3 for x in values)
    return _finite(n / ((n - 1) * (n - 2)) * total)


def excess_kurtosis(values: Sequence[float]) -> float:
    """Sample excess kurtosis (0 for a normal distribution)."""
    n = len(values)
    if n < 4:
        return 0.0
    mean = statistics.fmean(values)
    std_dev = statistics.stdev(values)
    if std_dev == 0:
        return 0.0
    total = sum(((x - mean) / std_dev) ** 4 for x in values)
    return _finite(
        n * (n + 1) / ((n - 1) * (n - 2) * (n - 3)) * total
        - 3 * (n - 1) ** 2 / ((n - 2) * (n - 3))
    )


def iqr_outliers(values: Sequence[float]) -> list[float]:
    """Values outside [Q1 - 1.5 IQR, Q3 + 1.5 IQR]. Needs at least 4 samples."""
    if len(values) < 4:
        return []
    ordered = sorted(values)
    q1 = percentile(ordered, 25)
    q3 = percentile(ordered, 75)
    iqr = q3 - q1
    lower_bound = q1 - 1.5 * iqr
    upper_bound = q3 + 1.5 * iqr
    return [v for v in values if v < lower_bound or v > upper_bound]


def consistency_score(cv: float) -> float:
    """Map a coefficient of variation to 0-100 (CV <= 10% -> 100, CV >= 50% -> 0)."""
    if cv <= 10:
        return 100.0
    if cv >= 50:
        return 0.0
    return 100.0 - (cv - 10) / 40.0 * 100


def data_quality_score(sample_size: int, cv: float, completeness: float) -> float:
    """Weighted 0-100 score: sample size 30%, consistency 40%, completeness 30%."""
    if sample_size == 0:
        return 0.0
    size_score = min(sample_size / 10.0 * 100, 100.0)
    return round(size_score * 0.3 + consistency_score(cv) * 0.4 + completeness * 0.3, 2)


class StatisticalAnalyzer:
    """Stateless statistical engine for comparing measurement populations.

    Distribution functions come from scipy.stats. Mann-Whitney U always uses
    the large-sample normal approximation without tie correction.
    """

    def __init__(self, confidence_level: float = 0.95, practical_threshold: float = 5.0):
        """Initialize statistical analyzer.

        Args:
            confidence_level: Confidence level for tests and intervals
            practical_threshold: Minimum |% difference| considered practically significant
        """
        if not 0 < confidence_level < 1:
            raise ValueError(f"confidence_level must be in (0, 1), got {confidence_level}")
        self.confidence_level = confidence_level
        self.practical_threshold = practical_threshold

    @property
    def alpha(self) -> float:
        return 1.0 - self.confidence_level

    # ===== Descriptive statistics =====

    def summarize(self, samples: Sequence[float]) -> DescriptiveStats:
        """Compute descriptive statistics for a sample.

        Non-finite values are dropped and lower the completeness component of
        the data quality score. Fewer than two usable points give a neutral
        summary.
        """
        values = [float(v) for v in samples if v is not None and math.isfinite(v)]
        n = len(values)

        if n == 0:
            return DescriptiveStats()
        if n == 1:
            only = values[0]
            return DescriptiveStats(
                count=1,
                mean=only,
                median=only,
                mode=only,
                minimum=only,
                maximum=only,
                quartiles={"q1": only, "q2": only, "q3": only},
                percentiles={f"p{p}": only for p in PERCENTILES},
            )

        ordered = sorted(values)
        mean = statistics.fmean(values)
        variance = statistics.variance(values, xbar=mean)
        cv = coefficient_of_variation(values)
        completeness = n / len(samples) * 100

        return DescriptiveStats(
            count=n,
            mean=mean,
            median=statistics.median(values),
            mode=Counter(values).most_common(1)[0][0],
            variance=variance,
            standard_deviation=math.sqrt(variance),
            minimum=ordered[0],
            maximum=ordered[-1],
            range=ordered[-1] - ordered[0],
            quartiles={
                "q1": percentile(ordered, 25),
                "q2": percentile(ordered, 50),
                "q3": percentile(ordered, 75),
            },
            percentiles={f"p{p}": percentile(ordered, p) for p in PERCENTILES},
            skewness=skewness(values),
            kurtosis=excess_kurtosis(values),
            coefficient_of_variation=cv,
            outlier_count=len(iqr_outliers(values)),
            data_quality_score=data_quality_score(n, cv, completeness),
        )

    def summarize_measurements(self, measurements: Sequence[Measurement]) -> MeasurementSummary:
        """Summarize execution time, peak memory and file operations."""
        if not measurements:
            return MeasurementSummary()

        time_stats = self.summarize([m.execution_time for m in measurements])
        memory_stats = self.summarize([m.memory_peak for m in measurements])
        file_stats = self.summarize([float(m.files_created) for m in measurements])

        return MeasurementSummary(
            sample_size=len(measurements),
            execution_time_stats=time_stats,
            memory_usage_stats=memory_stats,
            file_operations_stats=file_stats,
            avg_execution_time=time_stats.mean,
            median_execution_time=time_stats.median,
            std_dev_execution_time=time_stats.standard_deviation,
            avg_peak_memory=memory_stats.mean,
            avg_file_operations=file_stats.mean,
            coefficient_of_variation=time_stats.coefficient_of_variation,
            outlier_count=time_stats.outlier_count,
            data_quality_score=time_stats.data_quality_score,
        )

    # ===== Comparison =====

    def compare(self, old: Sequence[float], new: Sequence[float]) -> ComparisonResult:
        """Compare two sample populations (old system vs new system).

        A negative percentage difference means the new population is lower
        (faster, for timings).
        """
        old_values = [float(v) for v in old if v is not None and math.isfinite(v)]
        new_values = [float(v) for v in new if v is not None and math.isfinite(v)]

        difference = self._performance_difference(old_values, new_values)
        tests = {
            "t_test": self.welch_t_test(old_values, new_values),
            "mann_whitney_u": self.mann_whitney_u_test(old_values, new_values),
            "kolmogorov_smirnov": self.ks_test(old_values, new_values),
        }
        intervals = {
            "old_system": self.confidence_interval(old_values),
            "new_system": self.confidence_interval(new_values),
            "difference": self.difference_confidence_interval(old_values, new_values),
        }

        result = ComparisonResult(
            old_summary=self.summarize(old_values),
            new_summary=self.summarize(new_values),
            sample_sizes={"old_system": len(old_values), "new_system": len(new_values)},
            performance_difference=difference,
            significance_tests=tests,
            confidence_intervals=intervals,
            effect_size=self.effect_size(old_values, new_values),
            statistically_significant=any(test.significant for test in tests.values()),
            practical_significance=abs(difference.percentage_difference)
            >= self.practical_threshold,
            p_value=min(test.p_value for test in tests.values()),
            confidence_level=self.confidence_level,
        )

        logger.debug(
            "populations_compared",
            old_n=len(old_values),
            new_n=len(new_values),
            percentage_difference=difference.percentage_difference,
            significant=result.statistically_significant,
            p_value=result.p_value,
        )
        return result

    def compare_measurements(
        self, old: Sequence[Measurement], new: Sequence[Measurement]
    ) -> ComparisonResult:
        """Compare execution times of two measurement sets."""
        return self.compare([m.execution_time for m in old], [m.execution_time for m in new])

    def welch_t_test(self, group1: Sequence[float], group2: Sequence[float]) -> SignificanceTest:
        """Two-sample t-test assuming unequal variances."""
        n1, n2 = len(group1), len(group2)
        if n1 < 2 or n2 < 2:
            return self._null_test()

        var1 = statistics.variance(group1) / n1
        var2 = statistics.variance(group2) / n2
        standard_error = math.sqrt(var1 + var2)
        if standard_error == 0:
            return self._null_test("Two-sample t-test (Welch)", note="Zero variance in both groups")

        t_statistic = (statistics.fmean(group1) - statistics.fmean(group2)) / standard_error
        df = (var1 + var2) ** 2 / (var1**2 / (n1 - 1) + var2**2 / (n2 - 1))
        p_value = _finite(2 * stats.t.sf(abs(t_statistic), df), default=1.0)

        return SignificanceTest(
            test_name="Two-sample t-test (Welch)",
            statistic=round(_finite(t_statistic), 4),
            p_value=round(min(p_value, 1.0), 6),
            significant=p_value < self.alpha,
            alpha=self.alpha,
            degrees_of_freedom=round(_finite(df), 2),
        )

    def mann_whitney_u_test(
        self, group1: Sequence[float], group2: Sequence[float]
    ) -> SignificanceTest:
        """Rank-sum test with the normal approximation for the p-value."""
        n1, n2 = len(group1), len(group2)
        if n1 < 2 or n2 < 2:
            return self._null_test()

        ranks = stats.rankdata(list(group1) + list(group2))
        rank_sum = float(sum(ranks[:n1]))
        u1 = rank_sum - n1 * (n1 + 1) / 2
        u2 = n1 * n2 - u1
        u_statistic = min(u1, u2)

        mean_u = n1 * n2 / 2
        std_u = math.sqrt(n1 * n2 * (n1 + n2 + 1) / 12)
        z_score = (u_statistic - mean_u) / std_u
        p_value = _finite(2 * stats.norm.sf(abs(z_score)), default=1.0)

        return SignificanceTest(
            test_name="Mann-Whitney U test",
            statistic=round(u_statistic, 4),
            p_value=round(min(p_value, 1.0), 6),
            significant=p_value < self.alpha,
            alpha=self.alpha,
            z_score=round(z_score, 4),
        )

    def ks_test(self, group1: Sequence[float], group2: Sequence[float]) -> SignificanceTest:
        """Two-sample Kolmogorov-Smirnov test on the empirical distributions."""
        if len(group1) < 2 or len(group2) < 2:
            return self._null_test()

        result = stats.ks_2samp(group1, group2)
        p_value = _finite(result.pvalue, default=1.0)

        return SignificanceTest(
            test_name="Kolmogorov-Smirnov test",
            statistic=round(_finite(result.statistic), 4),
            p_value=round(min(p_value, 1.0), 6),
            significant=p_value < self.alpha,
            alpha=self.alpha,
        )

    def confidence_interval(self, values: Sequence[float]) -> ConfidenceInterval:
        """Interval around the mean (t critical value below 30 samples, z otherwise)."""
        n = len(values)
        if n < 2:
            mean = float(values[0]) if values else 0.0
            return ConfidenceInterval(
                mean=mean, lower=mean, upper=mean, confidence_level=self.confidence_level
            )

        mean = statistics.fmean(values)
        standard_error = statistics.stdev(values) / math.sqrt(n)
        margin = self._critical_value(n - 1, large_sample=n >= LARGE_SAMPLE_SIZE) * standard_error

        return ConfidenceInterval(
            mean=round(mean, 6),
            lower=round(mean - margin, 6),
            upper=round(mean + margin, 6),
            margin_of_error=round(margin, 6),
            confidence_level=self.confidence_level,
        )

    def difference_confidence_interval(
        self, group1: Sequence[float], group2: Sequence[float]
    ) -> ConfidenceInterval:
        """Interval around mean(group1) - mean(group2) with Welch degrees of freedom."""
        n1, n2 = len(group1), len(group2)
        if n1 < 2 or n2 < 2:
            return ConfidenceInterval(confidence_level=self.confidence_level)

        diff = statistics.fmean(group1) - statistics.fmean(group2)
        se1_sq = statistics.variance(group1) / n1
        se2_sq = statistics.variance(group2) / n2
        standard_error = math.sqrt(se1_sq + se2_sq)

        if standard_error == 0:
            margin = 0.0
        else:
            df = (se1_sq + se2_sq) ** 2 / (se1_sq**2 / (n1 - 1) + se2_sq**2 / (n2 - 1))
            margin = self._critical_value(df) * standard_error

        return ConfidenceInterval(
            mean=round(diff, 6),
            lower=round(diff - margin, 6),
            upper=round(diff + margin, 6),
            margin_of_error=round(margin, 6),
            confidence_level=self.confidence_level,
        )

    def effect_size(self, group1: Sequence[float], group2: Sequence[float]) -> EffectSize:
        """Cohen's d with pooled standard deviation, capped at +/-10.

        When both groups have zero variance but different means the effect is
        reported at the cap.
        """
        n1, n2 = len(group1), len(group2)
        if n1 < 2 or n2 < 2:
            return EffectSize()

        mean_diff = statistics.fmean(group1) - statistics.fmean(group2)
        pooled_std = math.sqrt(
            ((n1 - 1) * statistics.variance(group1) + (n2 - 1) * statistics.variance(group2))
            / (n1 + n2 - 2)
        )

        if pooled_std == 0:
            cohens_d = 0.0 if mean_diff == 0 else math.copysign(COHENS_D_CAP, mean_diff)
        else:
            cohens_d = max(-COHENS_D_CAP, min(COHENS_D_CAP, mean_diff / pooled_std))

        magnitude = abs(cohens_d)
        if magnitude < 0.2:
            interpretation = EffectMagnitude.NEGLIGIBLE
        elif magnitude < 0.5:
            interpretation = EffectMagnitude.SMALL
        elif magnitude < 0.8:
            interpretation = EffectMagnitude.MEDIUM
        else:
            interpretation = EffectMagnitude.LARGE

        return EffectSize(
            cohens_d=round(cohens_d, 4),
            magnitude=round(magnitude, 4),
            interpretation=interpretation,
        )

    # ===== Regression and power =====

    def detect_regression(
        self,
        baseline: Sequence[float],
        current: Sequence[float],
        threshold: float = 5.0,
    ) -> RegressionReport:
        """Flag a regression when current is slower by more than threshold% and significant."""
        comparison = self.compare(baseline, current)
        baseline_mean = comparison.performance_difference.old_mean
        current_mean = comparison.performance_difference.new_mean
        change = comparison.performance_difference.percentage_difference

        is_regression = change > threshold and comparison.statistically_significant

        if is_regression:
            recommendation = classify(change, REGRESSION_TIERS).message
        elif change > 0:
            recommendation = UNCONFIRMED_DEGRADATION
        else:
            recommendation = NO_REGRESSION

        if is_regression:
            logger.warning(
                "performance_regression_detected",
                change_percent=change,
                threshold=threshold,
                p_value=comparison.p_value,
            )

        return RegressionReport(
            is_regression=is_regression,
            performance_change_percent=change,
            regression_threshold=threshold,
            baseline_mean=round(baseline_mean, 4),
            current_mean=round(current_mean, 4),
            statistical_significance=comparison.statistically_significant,
            confidence_level=self.confidence_level,
            recommendation=recommendation,
        )

    def statistical_power(self, effect_size: float, sample_size: int, alpha: float = 0.05) -> float:
        """Power of a two-sided two-sample t-test with equal group sizes."""
        if sample_size < 2 or effect_size == 0:
            return 0.0 if sample_size < 2 else alpha

        df = 2 * sample_size - 2
        critical = stats.t.ppf(1 - alpha / 2, df)
        non_centrality = abs(effect_size) * math.sqrt(sample_size / 2.0)
        power = stats.nct.sf(critical, df, non_centrality) + stats.nct.cdf(
            -critical, df, non_centrality
        )
        return round(min(max(_finite(power), 0.0), 1.0), 4)

    def recommend_sample_size(
        self, effect_size: float, desired_power: float = 0.8, alpha: float = 0.05
    ) -> int:
        """Smallest per-group sample size reaching the desired power (capped at 100)."""
        if effect_size <= 0:
            return MIN_SAMPLE_SIZE

        for sample_size in range(MIN_SAMPLE_SIZE, MAX_RECOMMENDED_SAMPLE_SIZE + 1):
            if self.statistical_power(effect_size, sample_size, alpha) >= desired_power:
                return sample_size
        return MAX_RECOMMENDED_SAMPLE_SIZE

    # ===== Helpers =====

    def _performance_difference(
        self, old_values: Sequence[float], new_values: Sequence[float]
    ) -> PerformanceDifference:
        if not old_values or not new_values:
            return PerformanceDifference()

        old_mean = statistics.fmean(old_values)
        new_mean = statistics.fmean(new_values)
        absolute = new_mean - old_mean
        percentage = absolute / old_mean * 100 if old_mean != 0 else 0.0

        return PerformanceDifference(
            absolute_difference=round(absolute, 6),
            percentage_difference=round(percentage, 2),
            improvement=percentage < 0,
            old_mean=round(old_mean, 6),
            new_mean=round(new_mean, 6),
        )

    def _critical_value(self, df: float, large_sample: bool = False) -> float:
        quantile = 1 - self.alpha / 2
        if large_sample:
            return float(stats.norm.ppf(quantile))
        return _finite(stats.t.ppf(quantile, df), default=float(stats.norm.ppf(quantile)))

    def _null_test(
        self, test_name: str = "Insufficient data", note: str | None = None
    ) -> SignificanceTest:
        return SignificanceTest(
            test_name=test_name,
            statistic=0.0,
            p_value=1.0,
            significant=False,
            alpha=self.alpha,
            note=note,
        )
