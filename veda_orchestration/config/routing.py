"""Static routing tables for agent selection and ordering.

Agent ids:
- content-analysis: claim and language-pattern analysis (runs first)
- source-forensics: origin and credibility of the source
- multilingual: non-English content
- social-graph: propagation on social platforms
- educational-content: educational and academic material

Dependencies are "must run after" edges. Only source-forensics,
social-graph and educational-content wait for content-analysis.
"""

from typing import Dict, List

CONTENT_ANALYSIS = "content-analysis"
SOURCE_FORENSICS = "source-forensics"
MULTILINGUAL = "multilingual"
SOCIAL_GRAPH = "social-graph"
EDUCATIONAL_CONTENT = "educational-content"

# Base agent list per content kind
CONTENT_KIND_AGENTS: Dict[str, List[str]] = {
    "news_article": [CONTENT_ANALYSIS, SOURCE_FORENSICS, MULTILINGUAL, SOCIAL_GRAPH],
    "social_media_post": [CONTENT_ANALYSIS, SOCIAL_GRAPH, SOURCE_FORENSICS],
    "video_content": [CONTENT_ANALYSIS, SOURCE_FORENSICS, EDUCATIONAL_CONTENT],
    "image_with_text": [CONTENT_ANALYSIS, SOURCE_FORENSICS, MULTILINGUAL],
    "academic_paper": [CONTENT_ANALYSIS, SOURCE_FORENSICS, EDUCATIONAL_CONTENT],
    "government_document": [CONTENT_ANALYSIS, SOURCE_FORENSICS],
    "educational_content": [EDUCATIONAL_CONTENT, CONTENT_ANALYSIS, SOURCE_FORENSICS],
    "multimedia_content": [CONTENT_ANALYSIS, SOURCE_FORENSICS, SOCIAL_GRAPH, EDUCATIONAL_CONTENT],
    "unknown": [
        CONTENT_ANALYSIS,
        SOURCE_FORENSICS,
        MULTILINGUAL,
        SOCIAL_GRAPH,
        EDUCATIONAL_CONTENT,
    ],
}

AGENT_DEPENDENCIES: Dict[str, List[str]] = {
    SOURCE_FORENSICS: [CONTENT_ANALYSIS],
    SOCIAL_GRAPH: [CONTENT_ANALYSIS],
    EDUCATIONAL_CONTENT: [CONTENT_ANALYSIS],
}

SOCIAL_PLATFORMS = frozenset({"twitter", "facebook", "instagram", "tiktok"})
EDUCATIONAL_TAGS = frozenset({"education", "learning", "tutorial"})

# Execution time estimate multipliers (lower = faster lane)
PRIORITY_TIME_MULTIPLIERS: Dict[str, float] = {
    "low": 1.0,
    "medium": 0.8,
    "high": 0.6,
    "critical": 0.4,
}

ROUTING_OVERHEAD_FACTOR = 1.2

# Per-attempt timeout multipliers applied to the base timeout
PRIORITY_TIMEOUT_MULTIPLIERS: Dict[str, float] = {
    "low": 1.5,
    "medium": 1.0,
    "high": 0.7,
    "critical": 0.5,
}

DEFAULT_AGENT_WEIGHTS: Dict[str, float] = {
    CONTENT_ANALYSIS: 1.0,
    SOURCE_FORENSICS: 1.2,
    MULTILINGUAL: 0.8,
    SOCIAL_GRAPH: 0.9,
    EDUCATIONAL_CONTENT: 0.7,
}

# Supported kinds and max processing times for the HTTP adapters
AGENT_PROFILES: Dict[str, dict] = {
    CONTENT_ANALYSIS: {
        "name": "Content Analysis Agent",
        "supported_content_kinds": list(CONTENT_KIND_AGENTS.keys()),
        "max_processing_time": 15_000,
    },
    SOURCE_FORENSICS: {
        "name": "Source Forensics Agent",
        "supported_content_kinds": [
            "news_article",
            "social_media_post",
            "video_content",
            "image_with_text",
            "academic_paper",
            "government_document",
            "multimedia_content",
        ],
        "max_processing_time": 20_000,
    },
    MULTILINGUAL: {
        "name": "Multilingual Agent",
        "supported_content_kinds": [
            "news_article",
            "social_media_post",
            "image_with_text",
            "multimedia_content",
            "unknown",
        ],
        "max_processing_time": 12_000,
    },
    SOCIAL_GRAPH: {
        "name": "Social Graph Agent",
        "supported_content_kinds": ["social_media_post", "news_article", "multimedia_content"],
        "max_processing_time": 18_000,
    },
    EDUCATIONAL_CONTENT: {
        "name": "Educational Content Agent",
        "supported_content_kinds": [
            "educational_content",
            "academic_paper",
            "video_content",
            "news_article",
            "unknown",
        ],
        "max_processing_time": 25_000,
    },
}
