# technews/keywords.py
"""
Weighted keyword table for the relevance filter.

Three categories, weighted by FilterConfig.category_weights:
- companies: named tech companies (strongest signal)
- themes: technologies and sectors
- terms: generic industry vocabulary

Sources are French financial news, so French and English spellings are
both listed. Matching is case- and accent-insensitive; keywords shorter
than 4 characters only match whole words.
"""

TECH_KEYWORDS: dict[str, tuple[str, ...]] = {
    "companies": (
        # US big tech
        "Apple",
        "Microsoft",
        "Google",
        "Alphabet",
        "Amazon",
        "Meta",
        "Facebook",
        "NVIDIA",
        "Tesla",
        "Netflix",
        # Semiconductors
        "AMD",
        "Intel",
        "Qualcomm",
        "Broadcom",
        "TSMC",
        "ASML",
        "ARM",
        "STMicroelectronics",
        "Soitec",
        # Enterprise software
        "Salesforce",
        "Oracle",
        "IBM",
        "SAP",
        "Adobe",
        "ServiceNow",
        "Snowflake",
        "Palantir",
        "Dassault Systèmes",
        "Capgemini",
        # Chinese tech
        "Alibaba",
        "Tencent",
        "Baidu",
        "JD.com",
        "Xiaomi",
        "Huawei",
        # Other
        "OpenAI",
        "Anthropic",
        "Spotify",
        "Uber",
        "Airbnb",
        "PayPal",
        "Shopify",
        "Zoom",
        "Dropbox",
    ),
    "themes": (
        # AI
        "AI",
        "IA",
        "intelligence artificielle",
        "artificial intelligence",
        "machine learning",
        "deep learning",
        "ChatGPT",
        "GPT",
        "LLM",
        # Cloud and infrastructure
        "cloud",
        "AWS",
        "Azure",
        "data center",
        "datacenter",
        "centre de données",
        # Hardware
        "semi-conducteurs",
        "semiconducteurs",
        "semiconductors",
        "puces",
        "processeurs",
        "GPU",
        "CPU",
        # Security
        "cybersécurité",
        "cybersecurity",
        "ransomware",
        "hacking",
        # Emerging tech
        "blockchain",
        "crypto",
        "bitcoin",
        "ethereum",
        "5G",
        "6G",
        "IoT",
        "metaverse",
        "réalité virtuelle",
        "réalité augmentée",
        # Software
        "SaaS",
        "logiciel",
        "software",
    ),
    "terms": (
        "tech",
        "chip",
        "technologie",
        "technology",
        "numérique",
        "digital",
        "startup",
        "fintech",
        "biotech",
        "cleantech",
        "big tech",
        "GAFAM",
        "FAANG",
        "Magnificent Seven",
        "licenciements tech",
        "tech layoffs",
        "introduction en bourse",
    ),
}
