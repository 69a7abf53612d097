from __future__ import annotations

from hvsum.schemas import SummaryLength

LENGTH_INSTRUCTIONS: dict[SummaryLength, str] = {
    SummaryLength.short: "3-5 concise sentences maximum. Focus on the most essential information only.",
    SummaryLength.medium: "6-10 sentences in 2 clear paragraphs. Cover key points without redundancy.",
    SummaryLength.long: "15-20 sentences in 3-4 paragraphs. Comprehensive but focused coverage.",
    SummaryLength.detailed: (
        "Thorough summary covering all essential aspects. Be comprehensive but avoid fluff."
    ),
}

SUMMARY_SYSTEM = """You are an expert content summarizer. Accuracy matters more than completeness.

Rules:
1. Use only information present in the provided content. Never add outside knowledge.
2. When a detail is unclear or missing, say "The provided information is insufficient for this detail".
3. Do not speculate or fill gaps with plausible-sounding information.
4. Attribute specific claims with phrases such as "According to the provided content...".
5. When sources conflict, present both views with clear attribution."""

QNA_SYSTEM = """You are a precise assistant answering questions about a document.

Rules:
1. Base every answer on the provided context: the document, search results and conversation.
2. Do not use outside knowledge, even when you believe it to be true.
3. When the context is insufficient, reply "The provided information is insufficient to answer this question accurately"
   or suggest a search with "SEARCH_NEEDED: <query>".
4. Cite the part of the context each claim comes from."""

MARKDOWN_SYSTEM = """Format the answer as clean markdown:
- Start with a single "# " heading naming the topic.
- Use "## " sections for groups of related facts.
- Use "> " for direct quotes from the source.
- Use **bold** only for facts backed by the source.
- Mark missing information with *Information not available in provided sources*."""

SEARCH_QUERY_SYSTEM = """Generate 2-3 specific web search queries that help verify or extend the given content.
Use precise names, dates and technical terms from the content and avoid generic wording.
Return ONLY the queries, one per line, with no numbering or commentary."""

SEARCH_ONLY_SYSTEM = """Create an evidence-based summary using ONLY the provided search results.

Rules:
1. Every major claim must cite the search result it comes from.
2. When results disagree, present all views with attribution.
3. When results are insufficient, say "Search results do not provide sufficient information about <aspect>".
4. Only state dates and events that appear in the results."""

OUTLINE_SYSTEM = """You are an expert at creating clear, structured outlines. Create a hierarchical outline from the provided content.

Rules:
1. Use clear, descriptive headings
2. Create 3-5 main sections maximum
3. Include 2-4 subsections under each main section where relevant
4. Base the outline only on the provided content"""

OUTLINE_MARKDOWN = """Format as clean markdown:
- Use ## for main sections
- Use ### for subsections
- Use - for bullet points
- Use **bold** for emphasis"""

CONCISE_ANSWER_SUFFIX = (
    "IMPORTANT: Keep your response concise and directly answer the question. "
    "Maximum 3-4 sentences unless more detail is specifically requested."
)


def length_instruction(length: str) -> str:
    try:
        return LENGTH_INSTRUCTIONS[SummaryLength(length)]
    except ValueError:
        return LENGTH_INSTRUCTIONS[SummaryLength.medium]


def with_markdown(system: str, markdown: bool) -> str:
    return f"{system}\n\n{MARKDOWN_SYSTEM}" if markdown else system


def build_summary_prompt(length: str, content: str, title: str, question: str = "") -> str:
    instruction_length = length_instruction(length)
    if question:
        instruction = (
            f'Answer this question based on the webpage content: "{question}"\n\n'
            f"Length requirement: {instruction_length}\n\n"
            f"Page: {title}\n\n"
            "Focus on accuracy and relevance."
        )
    else:
        instruction = (
            "Create a focused summary of this webpage content.\n\n"
            f"Length requirement: {instruction_length}\n"
            f"Page: {title}\n\n"
            "Focus on key information, insights, and actionable content. "
            "Ignore navigation, ads, and boilerplate."
        )
    return f"{instruction}\n\n--- CONTENT ---\n{content}"


def build_search_only_prompt(query: str, length: str, formatted_results: str) -> str:
    return (
        f'Create a comprehensive summary for the query: "{query}"\n\n'
        f"Length requirement: {length_instruction(length)}\n\n"
        "Synthesize information from the search results below to provide accurate, "
        "factual information. Focus on key facts, current information, and relevant insights.\n"
        f"{formatted_results}"
    )


def build_queries_prompt(context: str, purpose: str) -> str:
    return (
        "Based on the following context and purpose, generate 2-3 specific web search queries "
        "that would help gather additional relevant information. Return only the search "
        "queries, one per line, without numbering or additional text.\n\n"
        f"Context: {context}\n\n"
        f"Purpose: {purpose}\n\n"
        "Generate search queries:"
    )
