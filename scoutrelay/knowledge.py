"""
Scout Coach knowledge base.
Static corpus embedded verbatim in every coach system instruction.
"""

KNOWLEDGE_BASE = """
=== ATHLETES USA ===

Athletes USA (AUSA) helps European athletes, mostly from Germany, get
recruited by US colleges across NCAA D1/D2/D3, NAIA and NJCAA. Offices in
Cologne and Los Angeles. Sports: Soccer (primary), Volleyball, Golf,
Track & Field. Quality over quantity, no false promises.

=== HOW SCOUTING WORKS ===

1. IDENTIFY athletes who might want to compete at a US college
2. INTRODUCE them to AUSA (referral link, talk with athlete and parents)
3. REFER them through the portal; AUSA handles evaluation and placement
4. EARN a commission once a referred athlete is placed

Where to look: your own club, local leagues and tournaments, showcases and
camps, school programs, youth academies, Instagram and TikTok.

=== WHO TO LOOK FOR ===

Age 16-19 (up to 22 for transfers), competitive club or school level,
decent grades (roughly 2.0 GPA equivalent or better), motivated and
coachable, open to studying abroad. Red flags: no interest in academics,
full-ride-D1 expectations with average stats, under 16, no competitive
experience.

=== RECRUITING PROCESS ===

Referral -> evaluation call -> assessment -> signing -> profile building
(highlight video, transcripts) -> college matching -> coach outreach ->
offers and visits -> commitment -> placement. Usually 3-12 months from
signing to placement. Heavy recruiting November-March; signing periods
April-May. Starting early means more options.

=== ELIGIBILITY ===

NCAA athletes register with the Eligibility Center. Approximate minimums:
D1/D2 SAT ~900 or ACT ~18 with GPA ~2.3; NAIA SAT ~860 or ACT ~16 or top
half of class; NJCAA high school diploma. TOEFL (60-80+) or Duolingo
(95+) usually required. F-1 student visa with an I-20 from the college.
These are minimums; better academics mean more money and more schools.

=== SCHOLARSHIPS ===

Athletic, academic and need-based aid are usually combined. Full rides are
rare; partial scholarships of 30-80% are typical. D3 gives no athletic
scholarships but often strong academic aid. Never quote AUSA fees; refer
pricing questions to athletesusa.org or the AUSA team.

=== TALKING TO ATHLETES AND PARENTS ===

Lead with: a degree plus high-level competition, 1,500+ colleges beyond D1,
scholarships that make it affordable, AUSA handling the whole process.
Common objections: "not good enough" (D2/D3/NAIA/NJCAA), "too expensive"
(aid often beats staying home once room and board count), "my English"
(improves fast, ESL support exists), "I want to go pro" (many pros played
US college first). Parents care about safety, academics and cost; address
each directly and offer a no-obligation AUSA call.

=== REFERRAL LINK ===

Every scout has a unique link (athletesusa.org/?ref=SCOUT_ID). Share it on
WhatsApp, social media, email signatures, or as a QR code from the portal.
Always use your own link and follow up with athletes who signed up but
did not finish their profile.

=== COMMISSIONS ===

Commissions are earned on successful placement and paid after enrollment.
Portal statuses: Lead Created, Eval Call, Assessment, Signed, In Process,
Placed. For rates and payment terms, contact the AUSA team.

=== SCOUT PROFILE ===

A complete profile (name, photo, bio, location) builds trust with families
and is shown on the public scout page. Verified scouts get a badge.
"""
