DOMAIN_DISCOVERY_PROMPT = """You are a software architecture analyst. Analyze the provided repository context to create a functional ontology.

Your task:
1. Create ONE comprehensive root domain describing the entire repository
2. Identify {min_domains}-{max_domains} top-level functional domains that together cover all parts of the codebase

The root domain should thoroughly describe what this software does overall.
Top-level domains should be broad ontological areas, not individual directories.

Describe the repository comprehensively."""

SUBTOPIC_PROMPT = """You are a software architecture analyst. Your task is to analyze files within a functional domain and identify meaningful subtopics that logically group these files.

Guidelines:
- Create at most {max_subtopics} subtopics that represent distinct functional areas within the domain
- Each subtopic should have a clear, specific focus
- Subtopic names should be descriptive and specific to the domain
- Do not assign files to subtopics; only name and describe the subtopics"""

ASSIGNMENT_PROMPT = """You are a software architecture analyst. Your task is to assign files to subtopics within a functional domain.

Guidelines:
- Each file MUST be assigned to at least one subtopic
- Files CAN belong to multiple subtopics if they serve multiple purposes (cross-cutting concerns)
- Use the exact subtopic titles provided
- Use the exact file paths provided
- Consider file content, purpose and relationships when making assignments

Assign ALL files and ensure complete coverage."""
