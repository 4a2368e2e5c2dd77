from .indicators import IndicatorSet, compute_indicators
from .levels import SupportResistance, find_swing_points, support_resistance
from .narrative import NarrativeEnricher
from .scoring import ScoreBreakdown, confidence_score
from .setups import SetupFinding, detect_setups, primary_setup
from .technical import AnalysisReport, TechnicalAnalyzer
