"""
Prompt templates for niche, problem and solution generation.

Kept as module-level constants so they can be tuned without touching logic.
The JSON templates must stay in sync with the shapes in ``sanitizer.py``.
"""

NICHES_PROMPT = """\
Generate {count} profitable digital product niches in the {category} category.
This is request batch {batch}; prefer less obvious ideas on later batches.
{exclude_clause}
Respond ONLY with valid JSON. No explanation, no markdown:
{{"niches": [{{"name": "...", "category": "{category}", "description": "...", \
"potential": "High|Medium|Low", "competition": "High|Medium|Low"}}]}}\
"""

NICHES_EXCLUDE_CLAUSE = "Do not suggest any of these niches: {names}.\n"

PROBLEMS_PROMPT = """\
You are a market researcher. List {count} specific, painful problems that people \
in the "{niche}" niche face and would pay a digital product to solve.
{exclude_clause}
For each problem provide:
1. title: a short name for the problem
2. description: one or two sentences
3. audience: who has this problem
4. severity: High, Medium or Low
5. complexity: how hard it is to solve (High, Medium or Low)
6. example: a concrete real-world example

Respond ONLY with valid JSON. No explanation, no markdown:
{{"problems": [{{"title": "...", "description": "...", "audience": "...", \
"severity": "High|Medium|Low", "complexity": "High|Medium|Low", "example": "..."}}]}}\
"""

PROBLEMS_EXCLUDE_CLAUSE = "Do not repeat any of these problems: {titles}.\n"

SOLUTION_PROMPT = """\
Write a practical implementation guide for a digital product in the "{niche}" niche \
that solves this problem: "{problem}".

Use exactly these section headings, in this order:
## Solution Overview
## Target Customer
## Implementation Plan
## Tools and Resources
## Monetization
## Marketing Strategy

Under "Implementation Plan" give numbered, concrete steps. Use plain markdown, no HTML.\
"""

EXPAND_SOLUTION_PROMPT = """\
Here is an implementation guide for a digital product in the "{niche}" niche \
that solves "{problem}":

---
{current_solution}
---

Continue the guide with additional depth the guide does not cover yet: \
advanced strategies, common pitfalls, metrics to track and a 90-day roadmap. \
Do not repeat existing sections. Use plain markdown, no HTML.\
"""

HEALTH_PROBE_PROMPT = "Hello, are you working?"

FALLBACK_SOLUTION = """\
## Solution Overview
We could not generate a tailored guide right now. Start by validating that the \
problem is real: talk to at least ten people in the niche and note how they \
solve it today.

## Implementation Plan
1. Define the smallest product that removes the core pain.
2. Build a landing page describing it and collect sign-ups.
3. Ship a first version to the sign-ups and gather feedback.
4. Iterate on pricing and features based on what people actually use.

Please try generating the guide again in a moment for a detailed plan.\
"""

FALLBACK_EXPANSION = (
    "No additional content could be generated right now. "
    "Please try expanding the guide again in a moment."
)
