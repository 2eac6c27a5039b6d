"""
Function calling schemas for Visibility Probe.

When the analysis model is an OpenAI model, the answer analyzer forces a
call to `analyze_answer` so the output arrives as structured arguments
instead of free text. Other providers are asked for the same JSON object
in plain text (see answer_analyzer.build_analysis_prompt).

NOTE: This uses the Responses API format (internally-tagged), not the Chat
Completions format with a nested "function" key.
"""

ANALYZE_ANSWER_FUNCTION = {
    "type": "function",
    "name": "analyze_answer",
    "description": """Analyze an AI assistant's answer to decide whether a specific business was mentioned, at what position, and which other businesses (competitors) were mentioned.

CRITICAL INSTRUCTIONS:
- Be strict: business_mentioned is true only if the business is explicitly named or recommended
- rank is the business's position among the businesses in the answer (1 = first); null if not mentioned or not in a list
- Include EVERY other business mentioned, in order of appearance
- For each competitor, give source_index: the number of the source (from the numbered source list) the competitor came from, or null""",
    "parameters": {
        "type": "object",
        "properties": {
            "business_mentioned": {
                "type": "boolean",
                "description": "True if the business was explicitly mentioned or recommended",
            },
            "rank": {
                "anyOf": [
                    {"type": "integer", "minimum": 1},
                    {"type": "null"},
                ],
                "description": "Position of the business in the answer (1 = first). Null if not mentioned or not ranked.",
            },
            "mention_context": {
                "anyOf": [{"type": "string"}, {"type": "null"}],
                "description": "Brief excerpt (max 150 chars) showing how the business was mentioned",
            },
            "competitors": {
                "type": "array",
                "description": "All other businesses mentioned in the answer",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {
                            "type": "string",
                            "description": "Competitor name as written in the answer",
                        },
                        "rank": {
                            "type": "integer",
                            "minimum": 1,
                            "description": "Position in the answer (1 = first)",
                        },
                        "source_index": {
                            "anyOf": [
                                {"type": "integer", "minimum": 1},
                                {"type": "null"},
                            ],
                            "description": "Number of the source this competitor came from, or null",
                        },
                    },
                    "required": ["name", "rank", "source_index"],
                    "additionalProperties": False,
                },
            },
        },
        "required": ["business_mentioned", "rank", "competitors"],
        "additionalProperties": False,
    },
}
