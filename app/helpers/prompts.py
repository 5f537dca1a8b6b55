RESUME_SYSTEM_PROMPT = """You are an expert resume analyzer and ATS (Applicant Tracking System) specialist.
Extract structured information from resumes and score ATS compatibility.
Always respond with valid JSON only, no markdown formatting or code blocks.
Be realistic with ATS scores: consider formatting, keywords and content quality."""

JOB_SYSTEM_PROMPT = """You are an expert job description analyzer and HR specialist.
Extract structured requirements and expectations from job descriptions.
Always respond with valid JSON only, no markdown formatting or code blocks.
Distinguish between required and preferred/nice-to-have qualifications."""

SKILL_GAP_SYSTEM_PROMPT = """You are a career development expert and learning path advisor.
Identify skill gaps between a candidate's profile and job requirements and give actionable recommendations.
Always respond with valid JSON only, no markdown formatting or code blocks."""

EXPLANATION_SYSTEM_PROMPT = """You are a professional recruiter writing candidate evaluation summaries.
Be concise and objective."""

RESUME_PROMPT = """Analyze the following resume and extract structured information.

RESUME TEXT:
{resume_text}

Return strict JSON with exactly these keys:
{{
  "skills": ["all skills: technical, soft, tools, frameworks"],
  "experience_summary": "brief summary of work experience",
  "total_years_experience": <number, total years of professional experience>,
  "experience_level": "Entry Level | Junior | Mid-Level | Senior | Staff | Principal",
  "education_summary": "summary of educational background",
  "highest_degree": "highest degree obtained (e.g. Bachelor's, Master's, PhD) or null",
  "ats_score": <number 0-100>,
  "ats_issues": ["ATS compatibility issues"],
  "ats_suggestions": ["suggestions to improve the ATS score"],
  "contact_info": {{"name": "...", "email": "...", "phone": "...", "location": "..."}},
  "certifications": ["..."],
  "languages": ["..."],
  "summary": "professional summary"
}}

- Use null for unknown contact fields and empty lists when nothing is found.
- Only include information that can be reasonably extracted or inferred.
"""

JOB_PROMPT = """Analyze the following job description for the position of "{title}".

JOB DESCRIPTION:
{description}

Return strict JSON with exactly these keys:
{{
  "required_skills": ["skills that are explicitly required"],
  "preferred_skills": ["nice-to-have skills"],
  "min_experience": <number, minimum years required, 0 if entry-level>,
  "max_experience": <number or null if no upper limit>,
  "experience_level": "Entry Level | Junior | Mid-Level | Senior | Staff | Principal" or null,
  "required_education": "minimum education requirement" or null,
  "keywords": ["important keywords for ATS matching"],
  "responsibilities": ["key responsibilities"],
  "benefits": ["listed benefits and perks"]
}}
"""

SKILL_GAP_PROMPT = """Analyze the skill gap between a candidate and a job opening for "{title}".

CANDIDATE SKILLS:
{candidate_skills}

REQUIRED JOB SKILLS:
{required_skills}

PREFERRED JOB SKILLS:
{preferred_skills}

Return strict JSON with exactly these keys:
{{
  "missing_skills": [{{"skill": "...", "importance": "high | medium | low", "description": "why it matters for the role"}}],
  "weak_skills": [{{"skill": "...", "current_level": "...", "required_level": "..."}}],
  "learning_path": [{{"skill": "...", "resources": ["..."], "estimated_time": "e.g. 2-4 weeks", "priority": <1-5, 1 highest>}}],
  "course_recommendations": [{{"skill": "...", "course_name": "...", "provider": "e.g. Coursera, Udemy", "url": "... or null"}}],
  "resume_improvements": ["specific suggestions to improve the resume for this role"],
  "estimated_time_to_ready": "estimated time to become a strong candidate"
}}

Be realistic and actionable. Prioritize by job requirements.
"""

EXPLANATION_PROMPT = """Explain briefly why this candidate matches (or doesn't match) the job.

JOB TITLE: {title}
JOB REQUIREMENTS: {requirements}

CANDIDATE SUMMARY: {summary}
CANDIDATE SKILLS: {skills}

MATCH SCORE: {score}%

Write 2-3 sentences highlighting key strengths and potential gaps. Plain text, no JSON.
"""
