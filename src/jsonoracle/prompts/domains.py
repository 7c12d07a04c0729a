"""Analysis domains and their prompt focus areas."""

import enum


class Domain(str, enum.Enum):
    """
    Business domain of a payload.

    Tags outside this set are accepted and analysed as ``GENERIC``.
    """

    FINANCE = "finance"
    HEALTHCARE = "healthcare"
    ECOMMERCE = "ecommerce"
    LOGISTICS = "logistics"
    MANUFACTURING = "manufacturing"
    REALESTATE = "realestate"
    EDUCATION = "education"
    ENVIRONMENTAL = "environmental"
    GENERIC = "generic"

    @classmethod
    def parse(cls, tag: str | None) -> "Domain":
        """Map a free-form domain tag to a Domain, falling back to GENERIC."""
        if not tag:
            return cls.GENERIC
        normalized = tag.strip().lower().replace("-", "_")
        if normalized == "real_estate":
            normalized = "realestate"
        try:
            return cls(normalized)
        except ValueError:
            return cls.GENERIC


# (role line, data label, focus areas)
DOMAIN_TEMPLATES: dict[Domain, tuple[str, str, tuple[str, ...]]] = {
    Domain.FINANCE: (
        "You are a quantitative financial analyst.",
        "FINANCIAL DATA",
        (
            "Portfolio and position status",
            "Market opportunities with clear buy/sell/hold reasoning",
            "Risk exposure and mitigation",
            "Performance trends over the period covered",
        ),
    ),
    Domain.HEALTHCARE: (
        "You are a clinical data analyst.",
        "MEDICAL DATA",
        (
            "Patient or population health indicators",
            "Abnormal readings and their likely significance",
            "Risk factors that call for follow-up",
            "Trends in outcomes or utilisation",
        ),
    ),
    Domain.ECOMMERCE: (
        "You are an e-commerce business analyst.",
        "E-COMMERCE DATA",
        (
            "Sales and revenue patterns",
            "Customer behaviour and conversion",
            "Inventory and pricing opportunities",
            "Demand forecast for the next period",
        ),
    ),
    Domain.LOGISTICS: (
        "You are a supply chain and logistics analyst.",
        "LOGISTICS DATA",
        (
            "Delivery performance and delays",
            "Route and capacity efficiency",
            "Bottlenecks and disruptions",
            "Cost reduction opportunities",
        ),
    ),
    Domain.MANUFACTURING: (
        "You are a manufacturing operations analyst.",
        "PRODUCTION DATA",
        (
            "Throughput and equipment effectiveness",
            "Quality defects and their sources",
            "Maintenance signals and failure risk",
            "Process optimisation opportunities",
        ),
    ),
    Domain.REALESTATE: (
        "You are a real estate market analyst.",
        "PROPERTY DATA",
        (
            "Price and valuation patterns",
            "Occupancy and rental yield",
            "Market trends by location or segment",
            "Investment risks and opportunities",
        ),
    ),
    Domain.EDUCATION: (
        "You are an education data analyst.",
        "LEARNING DATA",
        (
            "Learner performance patterns",
            "Engagement and attendance",
            "At-risk learners or cohorts",
            "Curriculum or intervention improvements",
        ),
    ),
    Domain.ENVIRONMENTAL: (
        "You are an environmental data scientist.",
        "ENVIRONMENTAL DATA",
        (
            "Measurement levels against expected ranges",
            "Seasonal or long-term trends",
            "Anomalous readings and possible causes",
            "Mitigation and monitoring actions",
        ),
    ),
    Domain.GENERIC: (
        "You are an AI data analyst.",
        "DATA",
        (
            "Key findings and observations",
            "Important patterns and trends",
            "Outliers and anomalies",
            "Actionable next steps",
        ),
    ),
}


class AnalysisType(str, enum.Enum):
    """
    Kind of analysis requested.

    Unknown types are analysed as ``GENERAL``, which uses the domain's own
    focus areas.
    """

    GENERAL = "general"
    PREDICTION = "prediction"
    OPTIMIZATION = "optimization"
    MONITORING = "monitoring"
    CLASSIFICATION = "classification"
    ANOMALY_DETECTION = "anomaly_detection"
    TREND_ANALYSIS = "trend_analysis"
    RISK_ASSESSMENT = "risk_assessment"
    PERFORMANCE_ANALYSIS = "performance_analysis"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, tag: str | None) -> "AnalysisType":
        if not tag:
            return cls.GENERAL
        try:
            return cls(tag.strip().lower().replace("-", "_").replace(" ", "_"))
        except ValueError:
            return cls.GENERAL


class OutputFormat(str, enum.Enum):
    """Presentation of the prose part of an answer."""

    STRUCTURED = "structured"
    NARRATIVE = "narrative"
    BULLET_POINTS = "bullet_points"
    TABLE = "table"
    JSON = "json"


OUTPUT_FORMAT_GUIDANCE: dict[OutputFormat, str] = {
    OutputFormat.STRUCTURED: "Structure your answer with clear sections and bullet points for easy reading.",
    OutputFormat.NARRATIVE: "Write a narrative answer that flows naturally from finding to finding.",
    OutputFormat.BULLET_POINTS: "Write your answer as bullet points with clear, concise statements.",
    OutputFormat.TABLE: "Present key findings in tables where appropriate.",
    OutputFormat.JSON: "Keep the prose short; put the substance of your answer in the JSON block.",
}


# Per analysis type, used for domains without a dedicated template: (task, focus areas)
ANALYSIS_TEMPLATES: dict[AnalysisType, tuple[str, tuple[str, ...]]] = {
    AnalysisType.PREDICTION: (
        "Analyze the following data and forecast what comes next.",
        (
            "Key patterns and trends in the history",
            "Predicted outcomes for the next period",
            "Confidence in each prediction",
            "Risk factors that could change the forecast",
        ),
    ),
    AnalysisType.OPTIMIZATION: (
        "Analyze the following data and recommend optimizations.",
        (
            "Current performance and efficiency",
            "Areas with the largest improvement potential",
            "Specific changes and their expected benefit",
            "Order in which to implement them",
        ),
    ),
    AnalysisType.MONITORING: (
        "Analyze the following data as a monitoring specialist.",
        (
            "Current status and health indicators",
            "Unusual patterns or outliers",
            "Changes over time",
            "Conditions that should raise an alert",
        ),
    ),
    AnalysisType.CLASSIFICATION: (
        "Analyze the following data and classify its records.",
        (
            "Natural groups or categories in the data",
            "Features that separate the groups",
            "Records that do not fit any group",
            "How the classification can be used",
        ),
    ),
    AnalysisType.ANOMALY_DETECTION: (
        "Analyze the following data for anomalies.",
        (
            "Values outside their expected ranges",
            "Unusual combinations or sequences",
            "Likely causes of each anomaly",
            "Which anomalies need immediate attention",
        ),
    ),
    AnalysisType.TREND_ANALYSIS: (
        "Analyze the following data for trends.",
        (
            "Direction and strength of each trend",
            "Seasonality or cycles",
            "Turning points and their timing",
            "Where the trends lead if they continue",
        ),
    ),
    AnalysisType.RISK_ASSESSMENT: (
        "Analyze the following data and assess its risks.",
        (
            "Main risk exposures",
            "Concentrations and single points of failure",
            "Likelihood and impact of each risk",
            "Mitigation steps",
        ),
    ),
    AnalysisType.PERFORMANCE_ANALYSIS: (
        "Analyze the following data and evaluate performance.",
        (
            "Key performance indicators and their levels",
            "Best and worst performers",
            "Drivers of the differences",
            "Targets worth setting next",
        ),
    ),
    AnalysisType.CUSTOM: (
        "Analyze the following data as instructed.",
        (
            "Findings relevant to the instructions",
            "Supporting evidence from the data",
            "Actionable next steps",
        ),
    ),
}


# Dedicated templates for common domain and analysis type pairs: (role, focus areas)
DOMAIN_ANALYSIS_TEMPLATES: dict[tuple[Domain, AnalysisType], tuple[str, tuple[str, ...]]] = {
    (Domain.FINANCE, AnalysisType.PREDICTION): (
        "You are a quantitative trading analyst specialising in portfolio optimisation.",
        (
            "Portfolio status: value, positions and cash",
            "Buy/sell/hold recommendations with target prices",
            "Risk level and how to manage it",
            "Prioritised trading actions with timing",
            "Rebalancing and allocation suggestions",
        ),
    ),
    (Domain.FINANCE, AnalysisType.RISK_ASSESSMENT): (
        "You are a financial risk analyst.",
        (
            "Portfolio risk metrics: VaR, Sharpe ratio, volatility",
            "Concentration and diversification",
            "Sector exposure and correlation",
            "Risk mitigation recommendations",
            "Stress scenarios and worst cases",
        ),
    ),
    (Domain.HEALTHCARE, AnalysisType.PREDICTION): (
        "You are a clinical data analyst. Your output is informational and does not replace a clinician.",
        (
            "Current health metrics and vital signs",
            "Risk factors and early warning indicators",
            "Evidence-based follow-up suggestions",
            "Monitoring plan",
        ),
    ),
    (Domain.HEALTHCARE, AnalysisType.ANOMALY_DETECTION): (
        "You are a clinical data analyst focused on abnormal patterns in patient data.",
        (
            "Unusual vital sign patterns",
            "Abnormal laboratory values and trends",
            "Concerning symptom combinations",
            "Conditions requiring immediate attention",
        ),
    ),
    (Domain.ECOMMERCE, AnalysisType.OPTIMIZATION): (
        "You are an e-commerce optimisation specialist.",
        (
            "Sales, conversion and retention metrics",
            "Customer behaviour and segments",
            "Inventory levels against demand",
            "Pricing strategy",
            "Marketing channel performance",
        ),
    ),
    (Domain.ECOMMERCE, AnalysisType.PREDICTION): (
        "You are an e-commerce data scientist specialising in demand forecasting.",
        (
            "Sales forecast and seasonal patterns",
            "Customer lifetime value and retention",
            "Product demand and stock requirements",
            "Growth trajectory",
        ),
    ),
    (Domain.LOGISTICS, AnalysisType.OPTIMIZATION): (
        "You are a logistics optimisation expert.",
        (
            "Route efficiency",
            "Inventory and warehouse efficiency",
            "Fleet utilisation and cost",
            "Supply chain bottlenecks",
            "KPIs to improve",
        ),
    ),
}


def supported_domains() -> list[str]:
    return [domain.value for domain in Domain]


def supported_analysis_types() -> list[str]:
    return [analysis_type.value for analysis_type in AnalysisType]
