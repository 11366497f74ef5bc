"""Keyword tables and regex patterns shared by the enhancer, analyzer and quick-reply cache.

Kept in a standalone module to avoid circular imports between types.py
and the core modules that compile these tables.
"""

DEFAULT_TOPIC_VOCABULARY: list[str] = [
    "api", "database", "frontend", "backend", "react", "typescript",
    "javascript", "python", "ai", "machine learning", "authentication",
    "deployment", "docker", "aws", "git", "testing", "debugging",
]

DEFAULT_PROBLEM_TERMS: list[str] = ["error", "issue", "problem", "bug"]

DEFAULT_SOLUTION_TERMS: list[str] = ["solution", "fix", "resolve", "answer"]

# Backward-reference cues inside a message ("as I said above")
DEFAULT_REFERENCE_CUES: list[str] = ["previous", "earlier", "above", "that"]

# Query cues that mean the answer depends on older turns
DEFAULT_HISTORY_CUES: list[str] = [
    r"\bprevious(?:ly)?\b",
    r"\bearlier\b",
    r"\bbefore\b",
    r"\blast\b",
    r"\bfirst\b",
    r"\bthat\b",
    r"\bwhat did\b",
    r"\bconversation\b",
    r"\bdiscussed\b",
    r"\bmentioned\b",
    r"\btalked about\b",
]

RECENT_SCOPE_PATTERN = r"\b(?:just|recent|recently|latest|current)\b"
SESSION_SCOPE_PATTERN = r"\b(?:session|today|conversation)\b"

COMPLEXITY_TERMS: list[str] = ["implementation", "architecture", "optimization", "algorithm"]

DEFAULT_RELATED_TOPIC_GROUPS: list[list[str]] = [
    ["code", "programming", "development", "python", "javascript", "typescript"],
    ["design", "ui", "interface", "frontend", "react"],
    ["data", "database", "storage", "backend"],
    ["api", "service", "endpoint", "backend"],
]

# Capitalized words that open sentences rather than name things
ENTITY_STOPWORDS: frozenset[str] = frozenset({
    "what", "when", "where", "which", "while", "with", "this", "that", "these",
    "those", "there", "their", "they", "then", "than", "here", "have", "has",
    "does", "done", "could", "would", "should", "will", "shall", "please",
    "thanks", "thank", "hello", "also", "additionally", "furthermore", "sure",
    "okay", "yeah", "maybe", "just", "some", "someone", "something", "from",
    "into", "about", "after", "before", "because", "since", "your", "yours",
    "mine", "ours", "tell", "show", "help", "explain", "create", "design",
    "great", "awesome", "amazing", "interesting", "good", "well", "let's",
    "lets", "first", "next", "finally", "here's", "that's", "it's", "i'm",
})

SEARCH_STOPWORDS: frozenset[str] = frozenset({
    "the", "and", "for", "are", "but", "not", "you", "all", "any", "can",
    "had", "her", "was", "one", "our", "out", "has", "his", "how", "its",
    "who", "did", "get", "use", "way", "she", "him", "let", "say", "too",
    "what", "when", "where", "which", "why", "with", "this", "that", "these",
    "those", "there", "then", "than", "have", "does", "about", "from", "into",
    "your", "would", "could", "should", "will", "some", "more", "also",
    "just", "like", "tell", "explain", "please",
})

# ---------------------------------------------------------------------------
# Quick replies
# ---------------------------------------------------------------------------

# Ordered: first match wins
QUICK_REPLY_PATTERNS: list[tuple[str, str]] = [
    ("agreement", r"^(?:yes|yeah|yep|sure|ok|okay|correct|right|exactly)[.!]?$"),
    ("disagreement", r"^(?:no|nope|not really|incorrect|wrong)[.!]?$"),
    ("acknowledgment", r"^(?:thanks|thank you|thx|got it|i see|understood|makes sense)[.!]?$"),
    ("clarification", r"^(?:what|who|when|where|why|how)\s+(?:do you mean|is that|about)"),
    ("elaboration", r"^(?:can you|could you)\s+(?:explain|clarify|elaborate|expand)"),
    ("continuation", r"^(?:tell me more|more|continue|go on)[.!]?$"),
    ("greeting", r"^(?:hello|hi|hey|good morning|good afternoon|good evening)[.!]?$"),
]

CANNED_REPLIES: dict[str, list[str]] = {
    "acknowledgment": [
        "You're welcome! Let me know if you need anything else.",
        "Happy to help! Feel free to ask if you have more questions.",
        "Glad I could help!",
        "Anytime! What else would you like to know?",
    ],
    "agreement": [
        "Great! Is there anything else you'd like to explore?",
        "Perfect! What would you like to do next?",
        "Sounds good! Let me know how I can help further.",
    ],
    "disagreement": [
        "I understand. Could you tell me more about what you're looking for?",
        "No problem. What would you like to do instead?",
        "Got it. How can I better help you?",
    ],
}

GREETING_SUFFIX = " How can I help you today?"

FACTUAL_QUERY_PATTERNS: list[str] = [
    r"^what (?:is|are)\b",
    r"^define\b",
    r"^explain\b",
    r"^how does\b.*\bwork",
    r"^tell me about\b",
    r"^describe\b",
    r"^list\b",
]

PERSONAL_QUERY_PATTERNS: list[str] = [r"\bi\b", r"\bmy\b"]

PERSONAL_RESPONSE_PATTERNS: list[str] = [r"\byou mentioned\b", r"\bin your case\b", r"\byour (?:code|project|setup)\b"]

# ---------------------------------------------------------------------------
# Conversation memory
# ---------------------------------------------------------------------------

USER_FACT_PATTERNS: list[str] = [
    r"\bI am (?:an? )?[^.!?\n]+",
    r"\bI'm (?:an? )?[^.!?\n]+",
    r"\bI have [^.!?\n]+",
    r"\bMy [^.!?\n]+",
    r"\bI work (?:at|for|in|on) [^.!?\n]+",
    r"\bI live (?:in|at) [^.!?\n]+",
    r"\bI like [^.!?\n]+",
    r"\bI prefer [^.!?\n]+",
]
